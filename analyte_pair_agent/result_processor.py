"""
Result Processor

Turns a pair model table into the set of significant pairs: global
Benjamini-Hochberg correction of the selected term's p-values, an R² floor
and a percentile floor on the absolute coefficient.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from .config.settings import ModelConfig, PhenotypeKind, ThresholdConfig
from .data_store import OmicsDataset
from .exceptions import ConfigurationError
from .pair_model_engine import PairModelResult
from .stats import abs_quantile, bh_fdr, group_spearman

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignificantPairSet:
    """Rows of a pair model table that passed the significance thresholds."""

    table: pd.DataFrame
    thresholds: ThresholdConfig
    coefficient_cutoff: float = float('nan')
    n_tested: int = 0

    def __len__(self) -> int:
        return len(self.table)

    @classmethod
    def empty(cls, thresholds: ThresholdConfig, columns: Optional[List[str]] = None) -> 'SignificantPairSet':
        return cls(table=pd.DataFrame(columns=columns or ['independent', 'outcome']),
                   thresholds=thresholds)

    def pairs(self) -> List[Tuple[Any, Any]]:
        """(independent, outcome) identifiers, in table order."""
        return list(zip(self.table['independent'], self.table['outcome']))

    def pair_keys(self) -> Set[Tuple[Any, Any]]:
        return set(self.pairs())


class ResultProcessor:
    """Applies FDR, R² and coefficient-percentile thresholds to pair results."""

    def __init__(self, thresholds: Optional[ThresholdConfig] = None):
        self.thresholds = thresholds or ThresholdConfig()

    @property
    def coefficient(self) -> str:
        return self.thresholds.coefficient

    def adjust(self, result: PairModelResult) -> pd.DataFrame:
        """Full table with an FDR column per selected term, each over all pairs."""
        table = result.table
        adjusted = table.copy()
        for kind in self.thresholds.coefficient_kinds:
            adjusted[f'{kind}_fdr'] = bh_fdr(table[f'{kind}_pval'].to_numpy(dtype=float))
        return adjusted

    def process(self, result: PairModelResult) -> SignificantPairSet:
        """Return the pairs passing every threshold; the input is not modified."""
        th = self.thresholds
        adjusted = self.adjust(result)
        coef = adjusted[f'{self.coefficient}_coeff'].to_numpy(dtype=float)
        fitted = adjusted['rsquared'].notna().to_numpy()

        # percentile over every fitted pair, before any filtering
        cutoff = abs_quantile(coef[fitted], th.coefficient_percentile)

        with np.errstate(invalid='ignore'):
            keep = (
                (adjusted['rsquared'].to_numpy(dtype=float) >= th.rsquared_cutoff) &
                (np.abs(coef) >= cutoff)
            )
            for kind in th.coefficient_kinds:
                keep = keep & (adjusted[f'{kind}_fdr'].to_numpy(dtype=float) <= th.fdr_cutoff)

        significant = adjusted[keep].reset_index(drop=True)
        logger.info(
            f"{len(significant)} of {int(fitted.sum())} fitted pairs significant "
            f"({'+'.join(th.coefficient_kinds)}: fdr<={th.fdr_cutoff}, r2>={th.rsquared_cutoff}, "
            f"|coef|>={cutoff:.4g})"
        )
        return SignificantPairSet(
            table=significant,
            thresholds=th,
            coefficient_cutoff=cutoff,
            n_tested=int(fitted.sum()),
        )


def process_results(result: PairModelResult, thresholds: Optional[ThresholdConfig] = None) -> SignificantPairSet:
    """Module-level entry point for pipeline integration."""
    return ResultProcessor(thresholds).process(result)


def add_group_correlations(significant: SignificantPairSet,
                           dataset: OmicsDataset,
                           model: ModelConfig) -> pd.DataFrame:
    """Spearman correlation of each significant pair within each phenotype group.

    Adds one `cor_<level>` column per level; with exactly two levels a
    `cor_diff` column holds the second level minus the first.
    """
    if model.phenotype_kind is not PhenotypeKind.CATEGORICAL:
        raise ConfigurationError("Group correlations need a categorical phenotype")

    dataset = dataset.aligned()
    groups = dataset.phenotype[model.phenotype]
    independent = dataset.matrix(model.independent)
    outcome = dataset.matrix(model.outcome)

    rows = []
    for ind_id, out_id in significant.pairs():
        rows.append(group_spearman(
            independent.loc[ind_id].to_numpy(dtype=float),
            outcome.loc[out_id].to_numpy(dtype=float),
            groups.to_numpy(),
        ))

    levels = sorted({level for row in rows for level in row}, key=str)
    table = significant.table.copy()
    for level in levels:
        table[f'cor_{level}'] = [row.get(level, np.nan) for row in rows]
    if len(levels) == 2:
        table['cor_diff'] = table[f'cor_{levels[1]}'] - table[f'cor_{levels[0]}']
    return table


def export_significant_pairs(significant: SignificantPairSet,
                             output_path: str,
                             sep: Optional[str] = None) -> str:
    """Write the significant pairs table as delimited text."""
    output_path = Path(output_path)
    if sep is None:
        sep = '\t' if output_path.suffix.lower() in ('.tsv', '.txt') else ','
    output_path.parent.mkdir(parents=True, exist_ok=True)
    significant.table.to_csv(output_path, sep=sep, index=False)
    logger.info(f"Significant pairs exported to {output_path}")
    return str(output_path)
