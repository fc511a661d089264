"""
Screening Pipeline

Filter -> Pair Model Engine -> Result Processor, as one reusable unit for the
original run, each cross-validation fold and each permutation trial.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .analyte_filter import AnalyteFilter
from .config.settings import ScreeningConfig
from .data_store import OmicsDataset
from .pair_model_engine import PairModelEngine, PairModelResult
from .result_processor import ResultProcessor, SignificantPairSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    dataset: OmicsDataset
    model_result: PairModelResult
    significant: SignificantPairSet


class ScreeningPipeline:
    """Runs filtering, pair model fitting and thresholding with one configuration.

    A `resampled` pipeline (cross-validation folds, permutation trials) treats a
    reference level missing from its samples as a sample shortfall rather than
    a configuration error.
    """

    def __init__(self, config: Optional[ScreeningConfig] = None, resampled: bool = False):
        self.config = config or ScreeningConfig()
        self.resampled = resampled
        self.analyte_filter = AnalyteFilter(self.config.filter)
        self.engine = PairModelEngine(
            self.config.model, self.config.processing, strict_reference=not resampled
        )
        self.processor = ResultProcessor(self.config.thresholds)

    def run(self, dataset: OmicsDataset, apply_filter: bool = True) -> PipelineResult:
        dataset = dataset.aligned()
        if apply_filter:
            dataset = self.analyte_filter.apply(dataset)
        model_result = self.engine.run(dataset)
        significant = self.processor.process(model_result)
        return PipelineResult(dataset=dataset, model_result=model_result, significant=significant)

    def fit_and_process(self, dataset: OmicsDataset) -> PipelineResult:
        """Engine and processor only, for data that is already filtered."""
        return self.run(dataset, apply_filter=False)
