"""
Analyte Pair Screening

Pairwise interaction linear models between two omics matrices (e.g. gene
expression and metabolite abundance) conditioned on a phenotype, with
FDR-based filtering, k-fold cross-validation and permutation testing.
"""

__version__ = "1.0.0"

from .analyte_filter import AnalyteFilter, filter_analytes
from .cross_validator import CrossValidationResult, CrossValidator, FoldPartition
from .data_loader import load_dataset
from .data_store import OmicsDataset
from .exceptions import (
    ConfigurationError,
    ConsistencyError,
    InsufficientSampleError,
    ModelFitError,
    PairScreeningError
)
from .pair_model_engine import PairModelEngine, PairModelResult
from .pathway_lookup import MappingPathwayLookup, PathwayLookup, SQLPathwayLookup, annotate_shared_pathways
from .permuter import PermutationResult, PermutationRun, Permuter
from .pipeline import ScreeningPipeline
from .result_processor import ResultProcessor, SignificantPairSet, export_significant_pairs

__all__ = [
    'AnalyteFilter',
    'filter_analytes',
    'CrossValidationResult',
    'CrossValidator',
    'FoldPartition',
    'load_dataset',
    'OmicsDataset',
    'ConfigurationError',
    'ConsistencyError',
    'InsufficientSampleError',
    'ModelFitError',
    'PairScreeningError',
    'PairModelEngine',
    'PairModelResult',
    'MappingPathwayLookup',
    'PathwayLookup',
    'SQLPathwayLookup',
    'annotate_shared_pathways',
    'PermutationResult',
    'PermutationRun',
    'Permuter',
    'ScreeningPipeline',
    'ResultProcessor',
    'SignificantPairSet',
    'export_significant_pairs'
]
