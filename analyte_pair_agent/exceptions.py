"""
Exception hierarchy for the pair screening pipeline.

Configuration and consistency errors abort a run. Model fit and sample size
errors are raised for a single pair, fold or permutation trial and absorbed
by the caller, which records an empty or missing result instead.
"""


class PairScreeningError(Exception):
    """Base exception for pair screening errors"""
    pass


class ConfigurationError(PairScreeningError):
    """Invalid threshold or parameter supplied by the caller"""
    pass


class ConsistencyError(PairScreeningError):
    """Analyte matrices and phenotype table share no usable samples"""
    pass


class ModelFitError(PairScreeningError):
    """Design matrix for a pair (or block of pairs) cannot be fitted"""
    pass


class InsufficientSampleError(PairScreeningError):
    """Too few usable samples remain for the requested model"""
    pass
