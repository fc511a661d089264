"""
Cross-Validation of Significant Pairs

Splits samples into k folds, reruns the screening pipeline on the training
samples of each fold and counts in how many folds every pair is significant.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold

from .config.settings import ScreeningConfig
from .data_store import OmicsDataset
from .exceptions import ConfigurationError, InsufficientSampleError
from .pair_model_engine import build_design
from .pipeline import ScreeningPipeline
from .result_processor import SignificantPairSet

logger = logging.getLogger(__name__)


class CrossValidationState(str, Enum):
    INITIALIZED = 'initialized'
    PARTITIONING = 'partitioning'
    PER_FOLD_PIPELINE = 'per_fold_pipeline'
    AGGREGATED = 'aggregated'


@dataclass(frozen=True)
class FoldPartition:
    """Training / held-out split of the samples for one fold."""

    fold: int
    training: List[Any]
    held_out: List[Any]


@dataclass(frozen=True)
class FoldResult:
    partition: FoldPartition
    significant: SignificantPairSet
    n_failed_pairs: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CrossValidationResult:
    folds: List[FoldResult]
    full: Optional[SignificantPairSet] = None

    @property
    def k(self) -> int:
        return len(self.folds)

    def fold_counts(self) -> pd.DataFrame:
        """Number of folds in which each pair is significant.

        Pairs significant in the all-sample run but in no fold are listed with
        a count of zero; `in_full` flags membership of the all-sample set.
        """
        counts: Dict[Any, int] = {}
        for fold in self.folds:
            for pair in fold.significant.pair_keys():
                counts[pair] = counts.get(pair, 0) + 1

        full_pairs = self.full.pair_keys() if self.full is not None else set()
        for pair in full_pairs:
            counts.setdefault(pair, 0)

        rows = [
            {'independent': ind, 'outcome': out, 'n_folds': n, 'in_full': (ind, out) in full_pairs}
            for (ind, out), n in counts.items()
        ]
        table = pd.DataFrame(rows, columns=['independent', 'outcome', 'n_folds', 'in_full'])
        return table.sort_values(
            ['n_folds', 'independent', 'outcome'], ascending=[False, True, True], kind='mergesort'
        ).reset_index(drop=True)

    def stable_pairs(self, min_folds: Optional[int] = None) -> pd.DataFrame:
        """Pairs significant in at least `min_folds` folds (default: more than k/2)."""
        if min_folds is None:
            min_folds = self.k // 2 + 1
        counts = self.fold_counts()
        return counts[counts['n_folds'] >= min_folds].reset_index(drop=True)

    def fold_summary(self) -> pd.DataFrame:
        return pd.DataFrame([
            {
                'fold': f.partition.fold,
                'n_training': len(f.partition.training),
                'n_held_out': len(f.partition.held_out),
                'n_significant': len(f.significant),
                'n_failed_pairs': f.n_failed_pairs,
                'error': f.error,
            }
            for f in self.folds
        ])


class CrossValidator:
    """k-fold cross-validation of the screening pipeline."""

    def __init__(self, config: Optional[ScreeningConfig] = None):
        self.config = config or ScreeningConfig()
        self.state = CrossValidationState.INITIALIZED

    def partition(self, dataset: OmicsDataset) -> List[FoldPartition]:
        """Split the dataset's shared samples into k folds (k = n gives leave-one-out)."""
        cv = self.config.cross_validation
        samples = np.asarray(dataset.aligned().samples, dtype=object)
        if cv.folds > len(samples):
            raise ConfigurationError(f"Cannot make {cv.folds} folds from {len(samples)} samples")

        kfold = KFold(
            n_splits=cv.folds,
            shuffle=cv.shuffle,
            random_state=cv.random_state if cv.shuffle else None,
        )
        return [
            FoldPartition(fold=i, training=samples[train].tolist(), held_out=samples[test].tolist())
            for i, (train, test) in enumerate(kfold.split(samples))
        ]

    def run(self, dataset: OmicsDataset, include_full: bool = True) -> CrossValidationResult:
        self.state = CrossValidationState.PARTITIONING
        dataset = dataset.aligned()
        # configuration problems surface once here, not as empty folds
        build_design(dataset, self.config.model)
        partitions = self.partition(dataset)
        logger.info(f"Running {len(partitions)}-fold cross-validation on {len(dataset.samples)} samples")

        self.state = CrossValidationState.PER_FOLD_PIPELINE
        workers = self.config.cross_validation.max_workers
        if workers == 1:
            folds = [self._run_fold(dataset, p) for p in partitions]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                folds = list(executor.map(lambda p: self._run_fold(dataset, p), partitions))

        full = None
        if include_full:
            full = ScreeningPipeline(self.config).run(dataset).significant

        self.state = CrossValidationState.AGGREGATED
        result = CrossValidationResult(folds=folds, full=full)
        failed = [f.partition.fold for f in folds if not f.succeeded]
        if failed:
            logger.warning(f"Folds with empty results due to insufficient samples: {failed}")
        logger.info(f"Cross-validation completed: {len(result.stable_pairs())} pairs stable across folds")
        return result

    def _run_fold(self, dataset: OmicsDataset, partition: FoldPartition) -> FoldResult:
        logger.info(f"Fold {partition.fold}: training on {len(partition.training)} samples")
        try:
            result = ScreeningPipeline(self.config, resampled=True).run(
                dataset.subset_samples(partition.training)
            )
        except InsufficientSampleError as e:
            logger.warning(f"Fold {partition.fold} skipped: {e}")
            return FoldResult(
                partition=partition,
                significant=SignificantPairSet.empty(self.config.thresholds),
                error=str(e),
            )
        return FoldResult(
            partition=partition,
            significant=result.significant,
            n_failed_pairs=result.model_result.n_failed,
        )


def run_cross_validation(dataset: OmicsDataset, config: Optional[ScreeningConfig] = None) -> CrossValidationResult:
    """Module-level entry point for pipeline integration."""
    return CrossValidator(config).run(dataset)
