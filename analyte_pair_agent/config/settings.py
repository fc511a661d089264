"""
Screening Configuration Settings

Typed configuration for filtering, pair model fitting, result thresholds,
cross-validation and permutation runs.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MATRIX_ROLES = ('type1', 'type2')
COEFFICIENT_KINDS = ('interaction', 'analyte', 'stype')


class PhenotypeKind(str, Enum):
    """Recognised phenotype and covariate kinds."""

    CONTINUOUS = 'continuous'
    CATEGORICAL = 'categorical'


def _check_fraction(name: str, value: float) -> None:
    if value is None or not (0.0 <= float(value) <= 1.0):
        raise ConfigurationError(f"{name} must be between 0 and 1, got {value!r}")


def _check_positive(name: str, value: int) -> None:
    if value is None or int(value) <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


@dataclass
class CovariateSpec:
    """A covariate column of the phenotype table and how to encode it."""

    name: str
    kind: PhenotypeKind = PhenotypeKind.CONTINUOUS

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Covariate name must not be empty")
        try:
            self.kind = PhenotypeKind(self.kind)
        except ValueError:
            raise ConfigurationError(f"Unknown covariate kind for {self.name}: {self.kind!r}")

    @classmethod
    def coerce(cls, value: Any) -> 'CovariateSpec':
        """Build a spec from a bare name, a dict or an existing spec."""
        if isinstance(value, CovariateSpec):
            return value
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, dict):
            return cls(**value)
        raise ConfigurationError(f"Cannot interpret covariate specification: {value!r}")


@dataclass
class FilterConfig:
    """Analyte filtering thresholds, applied per matrix."""

    type1_percentile: float = 0.0
    type2_percentile: float = 0.0
    type1_max_missing: float = 1.0
    type2_max_missing: float = 1.0
    type1_cv_percentile: float = 0.0
    type2_cv_percentile: float = 0.0

    def __post_init__(self):
        for name, value in asdict(self).items():
            _check_fraction(name, value)

    def for_matrix(self, role: str) -> Dict[str, float]:
        """Thresholds for one matrix role ('type1' or 'type2')."""
        return {
            'percentile': getattr(self, f'{role}_percentile'),
            'max_missing': getattr(self, f'{role}_max_missing'),
            'cv_percentile': getattr(self, f'{role}_cv_percentile'),
        }


@dataclass
class ModelConfig:
    """Pair model specification."""

    phenotype: str = 'group'
    phenotype_kind: PhenotypeKind = PhenotypeKind.CATEGORICAL
    reference_level: Optional[Any] = None
    covariates: List[CovariateSpec] = field(default_factory=list)
    independent: str = 'type2'
    outcome: str = 'type1'
    save_covariate_pvals: bool = False
    remove_duplicate_pairs: bool = False

    def __post_init__(self):
        if not self.phenotype:
            raise ConfigurationError("A phenotype column must be named")
        try:
            self.phenotype_kind = PhenotypeKind(self.phenotype_kind)
        except ValueError:
            raise ConfigurationError(f"Unknown phenotype kind: {self.phenotype_kind!r}")
        if self.reference_level is not None and self.phenotype_kind is PhenotypeKind.CONTINUOUS:
            raise ConfigurationError("reference_level only applies to categorical phenotypes")
        for role_name in ('independent', 'outcome'):
            role = getattr(self, role_name)
            if role not in MATRIX_ROLES:
                raise ConfigurationError(f"{role_name} must be one of {MATRIX_ROLES}, got {role!r}")
        self.covariates = [CovariateSpec.coerce(c) for c in (self.covariates or [])]
        names = [c.name for c in self.covariates]
        if self.phenotype in names:
            raise ConfigurationError(f"Phenotype {self.phenotype!r} cannot also be a covariate")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate covariates: {names}")
        reserved = set(names) & set(COEFFICIENT_KINDS)
        if reserved:
            raise ConfigurationError(f"Covariate names clash with model terms: {sorted(reserved)}")

    @property
    def same_matrix(self) -> bool:
        return self.independent == self.outcome

    @property
    def covariate_names(self) -> List[str]:
        return [c.name for c in self.covariates]


@dataclass
class ThresholdConfig:
    """Significance thresholds for the result processor."""

    fdr_cutoff: float = 0.05
    rsquared_cutoff: float = 0.0
    coefficient_percentile: float = 0.0
    coefficient: str = 'interaction'
    # kinds whose FDR must pass the cutoff as well; the percentile uses `coefficient` only
    additional_coefficients: List[str] = field(default_factory=list)

    def __post_init__(self):
        _check_fraction('fdr_cutoff', self.fdr_cutoff)
        _check_fraction('rsquared_cutoff', self.rsquared_cutoff)
        _check_fraction('coefficient_percentile', self.coefficient_percentile)
        self.additional_coefficients = list(self.additional_coefficients or [])
        kinds = [self.coefficient] + self.additional_coefficients
        for kind in kinds:
            if kind not in COEFFICIENT_KINDS:
                raise ConfigurationError(
                    f"coefficient must be one of {COEFFICIENT_KINDS}, got {kind!r}"
                )
        if len(set(kinds)) != len(kinds):
            raise ConfigurationError(f"Coefficient kinds listed more than once: {kinds}")

    @property
    def coefficient_kinds(self) -> List[str]:
        return [self.coefficient] + self.additional_coefficients


@dataclass
class ProcessingConfig:
    """Worker pool settings for pair model evaluation."""

    max_workers: int = 4
    chunk_size: int = 256

    def __post_init__(self):
        _check_positive('max_workers', self.max_workers)
        _check_positive('chunk_size', self.chunk_size)


@dataclass
class CrossValidationConfig:
    folds: int = 5
    shuffle: bool = True
    random_state: Optional[int] = 42
    max_workers: int = 1

    def __post_init__(self):
        if self.folds is None or int(self.folds) < 2:
            raise ConfigurationError(f"folds must be at least 2, got {self.folds!r}")
        _check_positive('max_workers', self.max_workers)


@dataclass
class PermutationConfig:
    num_permutations: int = 10
    base_seed: int = 42
    permute_covariates: bool = False
    max_workers: int = 1

    def __post_init__(self):
        if self.num_permutations is None or int(self.num_permutations) < 0:
            raise ConfigurationError(
                f"num_permutations must be zero or positive, got {self.num_permutations!r}"
            )
        _check_positive('max_workers', self.max_workers)


@dataclass
class ScreeningConfig:
    """Complete configuration of a screening run."""

    filter: FilterConfig = field(default_factory=FilterConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    cross_validation: CrossValidationConfig = field(default_factory=CrossValidationConfig)
    permutation: PermutationConfig = field(default_factory=PermutationConfig)

    SECTIONS = {
        'filter': FilterConfig,
        'model': ModelConfig,
        'thresholds': ThresholdConfig,
        'processing': ProcessingConfig,
        'cross_validation': CrossValidationConfig,
        'permutation': PermutationConfig,
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScreeningConfig':
        """Build a configuration from a nested dictionary (e.g. a JSON file)."""
        unknown = set(data) - set(cls.SECTIONS) - {'system'}
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")

        sections = {}
        for name, section_cls in cls.SECTIONS.items():
            values = data.get(name) or {}
            try:
                sections[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigurationError(f"Invalid '{name}' configuration: {e}")
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['model']['phenotype_kind'] = self.model.phenotype_kind.value
        data['model']['covariates'] = [
            {'name': c.name, 'kind': c.kind.value} for c in self.model.covariates
        ]
        return data

    @classmethod
    def from_environment(cls, base: Optional[Dict[str, Any]] = None) -> 'ScreeningConfig':
        """Create configuration from PAIR_SCREEN_* environment variables over defaults."""
        data = json.loads(json.dumps(base or DEFAULT_CONFIG))
        for env_name, (section, key, cast) in ENVIRONMENT_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            try:
                data.setdefault(section, {})[key] = cast(raw)
            except ValueError:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}")
            logger.debug(f"Configuration override from {env_name}: {section}.{key}={raw}")
        return cls.from_dict(data)


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ('1', 'true', 'yes')


ENVIRONMENT_OVERRIDES = {
    'PAIR_SCREEN_PHENOTYPE': ('model', 'phenotype', str),
    'PAIR_SCREEN_PHENOTYPE_KIND': ('model', 'phenotype_kind', str),
    'PAIR_SCREEN_INDEPENDENT': ('model', 'independent', str),
    'PAIR_SCREEN_OUTCOME': ('model', 'outcome', str),
    'PAIR_SCREEN_FDR_CUTOFF': ('thresholds', 'fdr_cutoff', float),
    'PAIR_SCREEN_RSQUARED_CUTOFF': ('thresholds', 'rsquared_cutoff', float),
    'PAIR_SCREEN_COEFFICIENT_PERCENTILE': ('thresholds', 'coefficient_percentile', float),
    'PAIR_SCREEN_MAX_WORKERS': ('processing', 'max_workers', int),
    'PAIR_SCREEN_FOLDS': ('cross_validation', 'folds', int),
    'PAIR_SCREEN_NUM_PERMUTATIONS': ('permutation', 'num_permutations', int),
    'PAIR_SCREEN_BASE_SEED': ('permutation', 'base_seed', int),
    'PAIR_SCREEN_PERMUTE_COVARIATES': ('permutation', 'permute_covariates', _as_bool),
}

# Default configuration
DEFAULT_CONFIG = {
    'system': {
        'name': 'Analyte Pair Screening',
        'version': '1.0.0',
        'log_level': 'INFO'
    },
    'filter': {
        'type1_percentile': 0.0,
        'type2_percentile': 0.0,
        'type1_max_missing': 1.0,
        'type2_max_missing': 1.0,
        'type1_cv_percentile': 0.0,
        'type2_cv_percentile': 0.0
    },
    'model': {
        'phenotype': 'group',
        'phenotype_kind': 'categorical',
        'reference_level': None,
        'covariates': [],
        'independent': 'type2',
        'outcome': 'type1',
        'save_covariate_pvals': False,
        'remove_duplicate_pairs': False
    },
    'thresholds': {
        'fdr_cutoff': 0.05,
        'rsquared_cutoff': 0.0,
        'coefficient_percentile': 0.0,
        'coefficient': 'interaction',
        'additional_coefficients': []
    },
    'processing': {
        'max_workers': 4,
        'chunk_size': 256
    },
    'cross_validation': {
        'folds': 5,
        'shuffle': True,
        'random_state': 42,
        'max_workers': 1
    },
    'permutation': {
        'num_permutations': 10,
        'base_seed': 42,
        'permute_covariates': False,
        'max_workers': 1
    }
}


def load_config(config_path: Optional[str] = None) -> ScreeningConfig:
    """Load configuration from a JSON file, or return defaults."""
    if config_path is None:
        return ScreeningConfig.from_dict(DEFAULT_CONFIG)
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse config {config_path}: {e}")

    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    for section, values in data.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    logger.info(f"Loaded configuration from {config_path}")
    return ScreeningConfig.from_dict(merged)


def save_config(config: ScreeningConfig, config_path: str) -> None:
    """Save configuration to file."""
    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)
