"""
Configuration Module

Provides centralized configuration management for the pair screening pipeline.
"""

from .settings import (
    DEFAULT_CONFIG,
    CovariateSpec,
    CrossValidationConfig,
    FilterConfig,
    ModelConfig,
    PermutationConfig,
    PhenotypeKind,
    ProcessingConfig,
    ScreeningConfig,
    ThresholdConfig,
    load_config,
    save_config
)

__all__ = [
    'DEFAULT_CONFIG',
    'CovariateSpec',
    'CrossValidationConfig',
    'FilterConfig',
    'ModelConfig',
    'PermutationConfig',
    'PhenotypeKind',
    'ProcessingConfig',
    'ScreeningConfig',
    'ThresholdConfig',
    'load_config',
    'save_config'
]
