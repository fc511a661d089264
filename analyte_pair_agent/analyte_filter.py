"""
Analyte Filtering

Removes high-missingness, low-abundance and low-variation analytes from each
matrix of a dataset independently.
"""

import logging
import warnings
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from .config.settings import FilterConfig
from .data_store import OmicsDataset

logger = logging.getLogger(__name__)


class AnalyteFilter:
    """Per-matrix analyte filter driven by a FilterConfig."""

    def __init__(self, config: FilterConfig = None):
        self.config = config or FilterConfig()
        self.filter_stats = {}

    def apply(self, dataset: OmicsDataset) -> OmicsDataset:
        """Return a reduced dataset; the input dataset is left untouched."""
        kept = {}
        for role in ('type1', 'type2'):
            matrix = dataset.matrix(role)
            kept[role] = self.select_analytes(matrix, role=role, **self.config.for_matrix(role))

        return dataset.subset_analytes(kept['type1'], kept['type2'])

    def select_analytes(self,
                        matrix: pd.DataFrame,
                        percentile: float = 0.0,
                        max_missing: float = 1.0,
                        cv_percentile: float = 0.0,
                        role: str = 'matrix') -> List[Any]:
        """Identifiers of the analytes passing all filters, in original order."""
        values = matrix.to_numpy(dtype=float)
        n_analytes = values.shape[0]
        stats = {'input': n_analytes}

        if values.shape[1] > 0:
            missing = np.isnan(values).mean(axis=1)
        else:
            missing = np.zeros(n_analytes)
        idx = np.flatnonzero(missing <= max_missing)
        stats['removed_missing'] = n_analytes - len(idx)

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', category=RuntimeWarning)
            means = np.nanmean(values[idx], axis=1) if len(idx) else np.array([])

        before = len(idx)
        idx = _drop_lowest(idx, means, percentile)
        stats['removed_abundance'] = before - len(idx)

        if cv_percentile > 0 and len(idx):
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', category=RuntimeWarning)
                sub = values[idx]
                cv = np.nanstd(sub, axis=1, ddof=1) / np.abs(np.nanmean(sub, axis=1))
            before = len(idx)
            idx = _drop_lowest(idx, cv, cv_percentile)
            stats['removed_cv'] = before - len(idx)

        stats['kept'] = len(idx)
        self.filter_stats[role] = stats
        logger.info(f"Filtered {role}: kept {len(idx)} of {n_analytes} analytes {stats}")

        return matrix.index[idx].tolist()


def _drop_lowest(idx: np.ndarray, scores: np.ndarray, fraction: float) -> np.ndarray:
    """Drop floor(fraction * n) entries with the lowest score.

    NaN scores rank lowest. On ties the higher original index is dropped first,
    so the lower index is kept.
    """
    n_drop = int(np.floor(fraction * len(idx) + 1e-9))
    if n_drop <= 0:
        return idx
    scores = np.where(np.isfinite(scores), scores, -np.inf)
    order = np.lexsort((-idx, scores))
    dropped = idx[order[:n_drop]]
    return idx[~np.isin(idx, dropped)]


def filter_analytes(dataset: OmicsDataset, config: FilterConfig = None) -> OmicsDataset:
    """Module-level entry point for pipeline integration."""
    return AnalyteFilter(config).apply(dataset)


def filter_summary(analyte_filter: AnalyteFilter) -> Dict[str, Dict[str, int]]:
    return {role: dict(stats) for role, stats in analyte_filter.filter_stats.items()}
