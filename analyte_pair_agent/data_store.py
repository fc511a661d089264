"""
Omics Data Store

Container for the two analyte abundance matrices and the sample phenotype
table, indexed by a common sample identifier.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .exceptions import ConsistencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OmicsDataset:
    """Two analyte x sample matrices plus a sample x phenotype/covariate table.

    Matrices hold one row per analyte and one column per sample; missing
    abundances are NaN. The phenotype table is indexed by sample id.
    Instances are never modified in place; every transform returns a new one.
    """

    type1: pd.DataFrame
    type2: pd.DataFrame
    phenotype: pd.DataFrame
    type1_meta: Optional[pd.DataFrame] = None
    type2_meta: Optional[pd.DataFrame] = None

    def __post_init__(self):
        for name in ('type1', 'type2', 'phenotype'):
            frame = getattr(self, name)
            if not isinstance(frame, pd.DataFrame):
                raise TypeError(f"{name} must be a pandas DataFrame, got {type(frame).__name__}")
        for name in ('type1', 'type2'):
            frame = getattr(self, name)
            if frame.index.has_duplicates:
                raise ConsistencyError(f"Duplicate analyte identifiers in {name}")
            if frame.columns.has_duplicates:
                raise ConsistencyError(f"Duplicate sample identifiers in {name}")
        if self.phenotype.index.has_duplicates:
            raise ConsistencyError("Duplicate sample identifiers in phenotype table")

    def matrix(self, role: str) -> pd.DataFrame:
        """Return the 'type1' or 'type2' matrix."""
        if role == 'type1':
            return self.type1
        if role == 'type2':
            return self.type2
        raise KeyError(f"Unknown matrix role: {role}")

    @property
    def samples(self) -> List[Any]:
        """Sample ids present in both matrices and the phenotype table, in type1 order."""
        common = set(self.type2.columns) & set(self.phenotype.index)
        return [s for s in self.type1.columns if s in common]

    def aligned(self) -> 'OmicsDataset':
        """Restrict every table to the shared samples, in a common order."""
        samples = self.samples
        if not samples:
            raise ConsistencyError(
                "No samples shared by type1, type2 and the phenotype table "
                f"({self.type1.shape[1]}, {self.type2.shape[1]}, {len(self.phenotype)} samples)"
            )

        dropped = {
            'type1': self.type1.shape[1] - len(samples),
            'type2': self.type2.shape[1] - len(samples),
            'phenotype': len(self.phenotype) - len(samples),
        }
        if any(dropped.values()):
            logger.warning(f"Dropping samples not shared across inputs: {dropped}")

        return self.subset_samples(samples)

    def subset_samples(self, samples: Iterable[Any]) -> 'OmicsDataset':
        """Return a dataset holding only the given samples, in the given order."""
        samples = list(samples)
        return replace(
            self,
            type1=self.type1.loc[:, samples],
            type2=self.type2.loc[:, samples],
            phenotype=self.phenotype.loc[samples],
        )

    def subset_analytes(self, type1_ids: Iterable[Any], type2_ids: Iterable[Any]) -> 'OmicsDataset':
        type1_ids = list(type1_ids)
        type2_ids = list(type2_ids)
        return replace(
            self,
            type1=self.type1.loc[type1_ids],
            type2=self.type2.loc[type2_ids],
            type1_meta=_subset_meta(self.type1_meta, type1_ids),
            type2_meta=_subset_meta(self.type2_meta, type2_ids),
        )

    def with_phenotype(self, phenotype: pd.DataFrame) -> 'OmicsDataset':
        """Return a dataset sharing the matrices but carrying another phenotype table."""
        return replace(self, phenotype=phenotype)

    def summary(self) -> Dict[str, Any]:
        return {
            'type1_analytes': int(self.type1.shape[0]),
            'type2_analytes': int(self.type2.shape[0]),
            'samples': len(self.samples),
            'type1_missing_pct': _missing_pct(self.type1),
            'type2_missing_pct': _missing_pct(self.type2),
            'phenotype_columns': self.phenotype.columns.tolist(),
        }


def _subset_meta(meta: Optional[pd.DataFrame], ids: List[Any]) -> Optional[pd.DataFrame]:
    if meta is None:
        return None
    return meta.loc[meta.index.intersection(ids, sort=False)]


def _missing_pct(frame: pd.DataFrame) -> float:
    if frame.size == 0:
        return 0.0
    return float(np.isnan(frame.to_numpy(dtype=float)).sum() / frame.size * 100)
