import json

import pytest

from analyte_pair_agent.config import (
    DEFAULT_CONFIG,
    ModelConfig,
    PhenotypeKind,
    ScreeningConfig,
    load_config,
    save_config
)
from analyte_pair_agent.exceptions import ConfigurationError


def test_defaults():
    config = load_config()

    assert config.thresholds.fdr_cutoff == 0.05
    assert config.thresholds.coefficient == 'interaction'
    assert config.model.phenotype_kind is PhenotypeKind.CATEGORICAL
    assert config.model.independent == 'type2'
    assert config.model.outcome == 'type1'
    assert config.cross_validation.folds == 5
    assert config.permutation.num_permutations == DEFAULT_CONFIG['permutation']['num_permutations']


@pytest.mark.parametrize('section, values', [
    ('thresholds', {'fdr_cutoff': 1.5}),
    ('thresholds', {'coefficient': 'slope'}),
    ('thresholds', {'additional_coefficients': ['slope']}),
    ('thresholds', {'additional_coefficients': ['interaction']}),
    ('cross_validation', {'folds': 1}),
    ('permutation', {'num_permutations': -1}),
    ('processing', {'max_workers': 0}),
    ('model', {'independent': 'type3'}),
    ('model', {'phenotype_kind': 'ordinal'}),
    ('model', {'covariates': ['age', 'age']}),
    ('model', {'covariates': ['interaction']}),
    ('model', {'unknown_option': True}),
])
def test_invalid_values_are_configuration_errors(section, values):
    with pytest.raises(ConfigurationError):
        ScreeningConfig.from_dict({section: values})


def test_unknown_section_is_rejected():
    with pytest.raises(ConfigurationError):
        ScreeningConfig.from_dict({'plots': {}})


def test_covariates_accept_names_and_dicts():
    model = ModelConfig(covariates=['age', {'name': 'batch', 'kind': 'categorical'}])

    assert model.covariate_names == ['age', 'batch']
    assert model.covariates[1].kind is PhenotypeKind.CATEGORICAL


def test_save_and_load_round_trip(tmp_path):
    config = ScreeningConfig.from_dict({
        'model': {'phenotype': 'status', 'covariates': [{'name': 'batch', 'kind': 'categorical'}]},
        'thresholds': {'fdr_cutoff': 0.1, 'coefficient': 'stype'},
    })
    path = tmp_path / 'config.json'

    save_config(config, str(path))
    loaded = load_config(str(path))

    assert loaded == config
    assert json.loads(path.read_text())['model']['phenotype_kind'] == 'categorical'


def test_partial_file_is_merged_over_defaults(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'thresholds': {'rsquared_cutoff': 0.2}}))

    config = load_config(str(path))

    assert config.thresholds.rsquared_cutoff == 0.2
    assert config.thresholds.fdr_cutoff == 0.05


def test_missing_or_malformed_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / 'absent.json'))

    path = tmp_path / 'bad.json'
    path.write_text('{not json')
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('PAIR_SCREEN_FDR_CUTOFF', '0.01')
    monkeypatch.setenv('PAIR_SCREEN_NUM_PERMUTATIONS', '25')
    monkeypatch.setenv('PAIR_SCREEN_PERMUTE_COVARIATES', 'yes')

    config = ScreeningConfig.from_environment()

    assert config.thresholds.fdr_cutoff == 0.01
    assert config.permutation.num_permutations == 25
    assert config.permutation.permute_covariates is True


def test_invalid_environment_value(monkeypatch):
    monkeypatch.setenv('PAIR_SCREEN_FOLDS', 'many')
    with pytest.raises(ConfigurationError):
        ScreeningConfig.from_environment()
