"""
Permutation Testing

Builds a null distribution by shuffling phenotype labels across samples
(analyte values fixed) and rerunning the pair models and thresholds for each
trial with its own seed.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .config.settings import ScreeningConfig
from .data_store import OmicsDataset
from .exceptions import ConfigurationError, InsufficientSampleError
from .pipeline import PipelineResult, ScreeningPipeline
from .result_processor import SignificantPairSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermutationRun:
    """One phenotype shuffle and the significant pairs it produced."""

    trial: int
    seed: int
    mean_rsquared: float
    n_significant: int
    significant: SignificantPairSet
    error: Optional[str] = None


@dataclass(frozen=True)
class PermutationResult:
    runs: List[PermutationRun]
    original: SignificantPairSet
    original_mean_rsquared: float = float('nan')

    @property
    def n_permutations(self) -> int:
        return len(self.runs)

    def count_summary(self) -> pd.DataFrame:
        """Per-trial significant pair count and mean R²."""
        return pd.DataFrame(
            [
                {
                    'trial': run.trial,
                    'seed': run.seed,
                    'n_significant': run.n_significant,
                    'mean_rsquared': run.mean_rsquared,
                    'error': run.error,
                }
                for run in self.runs
            ],
            columns=['trial', 'seed', 'n_significant', 'mean_rsquared', 'error'],
        )

    def pair_summary(self) -> pd.DataFrame:
        """For each originally significant pair, how many trials also found it."""
        original_pairs = self.original.pairs()
        hits = {pair: 0 for pair in original_pairs}
        for run in self.runs:
            for pair in run.significant.pair_keys():
                if pair in hits:
                    hits[pair] += 1

        table = pd.DataFrame(
            [{'independent': ind, 'outcome': out, 'n_permutations_significant': hits[(ind, out)]}
             for ind, out in original_pairs],
            columns=['independent', 'outcome', 'n_permutations_significant'],
        )
        with np.errstate(invalid='ignore', divide='ignore'):
            table['fraction_significant'] = (
                table['n_permutations_significant'] / self.n_permutations
                if self.n_permutations else np.nan
            )
        return table

    def permutation_pairs(self) -> pd.DataFrame:
        """Every pair significant in at least one trial, with its trial count."""
        counts = {}
        for run in self.runs:
            for pair in run.significant.pair_keys():
                counts[pair] = counts.get(pair, 0) + 1
        table = pd.DataFrame(
            [{'independent': ind, 'outcome': out, 'n_permutations_significant': n}
             for (ind, out), n in counts.items()],
            columns=['independent', 'outcome', 'n_permutations_significant'],
        )
        return table.sort_values(
            ['n_permutations_significant', 'independent', 'outcome'],
            ascending=[False, True, True], kind='mergesort'
        ).reset_index(drop=True)

    def empirical_pvalue(self) -> float:
        """(1 + #trials with at least as many significant pairs) / (1 + #trials)."""
        counts = np.array([run.n_significant for run in self.runs if run.error is None])
        return float((1 + np.sum(counts >= len(self.original))) / (1 + len(counts)))


def shuffle_phenotype(phenotype: pd.DataFrame,
                      column: str,
                      seed: int,
                      covariates: Sequence[str] = ()) -> pd.DataFrame:
    """Randomly reassign phenotype (and covariate) values across samples.

    Columns listed in `covariates` move together with the phenotype so each
    sample keeps a coherent phenotype/covariate row.
    """
    rng = np.random.default_rng(seed)
    order = rng.permutation(len(phenotype))
    shuffled = phenotype.copy()
    for name in [column] + list(covariates):
        shuffled[name] = phenotype[name].to_numpy()[order]
    return shuffled


class Permuter:
    """Phenotype-label permutation test of the pair screening results."""

    def __init__(self, config: Optional[ScreeningConfig] = None):
        self.config = config or ScreeningConfig()
        self.pipeline = ScreeningPipeline(self.config, resampled=True)

    def seeds(self, num_permutations: Optional[int] = None) -> List[int]:
        perm = self.config.permutation
        n = perm.num_permutations if num_permutations is None else num_permutations
        return [perm.base_seed + trial for trial in range(n)]

    def run(self,
            dataset: OmicsDataset,
            seeds: Optional[Sequence[int]] = None,
            original: Optional[PipelineResult] = None) -> PermutationResult:
        """Run one trial per seed on already-filtered data.

        `original` is the unpermuted result on the same data; when omitted the
        unpermuted models are fitted here first.
        """
        seeds = list(self.seeds() if seeds is None else seeds)
        if any(int(s) < 0 for s in seeds):
            raise ConfigurationError("Permutation seeds must be non-negative integers")

        dataset = dataset.aligned()
        if original is None:
            original = ScreeningPipeline(self.config).fit_and_process(dataset)
        logger.info(
            f"Running {len(seeds)} permutations against {len(original.significant)} originally significant pairs"
        )

        trials = list(enumerate(seeds))
        workers = self.config.permutation.max_workers
        if workers == 1 or len(trials) <= 1:
            runs = [self._run_trial(dataset, trial, seed) for trial, seed in trials]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                runs = list(executor.map(lambda ts: self._run_trial(dataset, *ts), trials))

        result = PermutationResult(
            runs=runs,
            original=original.significant,
            original_mean_rsquared=original.model_result.mean_rsquared(),
        )
        if runs:
            logger.info(f"Permutation empirical p-value for the significant pair count: {result.empirical_pvalue():.4g}")
        return result

    def _run_trial(self, dataset: OmicsDataset, trial: int, seed: int) -> PermutationRun:
        model = self.config.model
        covariates = model.covariate_names if self.config.permutation.permute_covariates else []
        permuted = dataset.with_phenotype(
            shuffle_phenotype(dataset.phenotype, model.phenotype, int(seed), covariates)
        )
        try:
            result = self.pipeline.fit_and_process(permuted)
        except InsufficientSampleError as e:
            logger.warning(f"Permutation {trial} (seed {seed}) skipped: {e}")
            return PermutationRun(
                trial=trial,
                seed=int(seed),
                mean_rsquared=float('nan'),
                n_significant=0,
                significant=SignificantPairSet.empty(self.config.thresholds),
                error=str(e),
            )

        logger.debug(f"Permutation {trial} (seed {seed}): {len(result.significant)} significant pairs")
        return PermutationRun(
            trial=trial,
            seed=int(seed),
            mean_rsquared=result.model_result.mean_rsquared(),
            n_significant=len(result.significant),
            significant=result.significant,
        )


def run_permutations(dataset: OmicsDataset,
                     config: Optional[ScreeningConfig] = None,
                     seeds: Optional[Sequence[int]] = None) -> PermutationResult:
    """Module-level entry point for pipeline integration."""
    return Permuter(config).run(dataset, seeds=seeds)
