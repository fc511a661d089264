import numpy as np
import pandas as pd
import pytest

from analyte_pair_agent.analyte_filter import AnalyteFilter, filter_analytes
from analyte_pair_agent.config.settings import FilterConfig
from analyte_pair_agent.data_store import OmicsDataset
from analyte_pair_agent.exceptions import ConfigurationError


def _dataset(type1, n_type2=3):
    samples = type1.columns
    type2 = pd.DataFrame(
        np.arange(n_type2 * len(samples), dtype=float).reshape(n_type2, len(samples)) + 1,
        index=[f"met{i}" for i in range(n_type2)],
        columns=samples,
    )
    phenotype = pd.DataFrame({'group': ['a', 'b'] * (len(samples) // 2)}, index=samples)
    return OmicsDataset(type1=type1, type2=type2, phenotype=phenotype)


def test_percentile_removes_lowest_mean_analytes():
    rng = np.random.default_rng(0)
    means = rng.permutation(20).astype(float)
    values = means[:, None] + rng.normal(0, 0.01, (20, 6))
    type1 = pd.DataFrame(values, index=[f"gene{i}" for i in range(20)], columns=[f"S{i}" for i in range(6)])

    filtered = filter_analytes(_dataset(type1), FilterConfig(type1_percentile=0.10))

    removed = set(type1.index) - set(filtered.type1.index)
    expected = {f"gene{i}" for i in np.argsort(means)[:2]}
    assert len(filtered.type1) == 18
    assert removed == expected
    assert filtered.type1.index.tolist() == [g for g in type1.index if g not in expected]
    assert len(filtered.type2) == 3


def test_ties_keep_lower_original_index():
    values = np.array([[1.0] * 4, [5.0] * 4, [1.0] * 4, [1.0] * 4, [6.0] * 4] + [[7.0 + i] * 4 for i in range(15)])
    type1 = pd.DataFrame(values, index=[f"gene{i}" for i in range(20)], columns=[f"S{i}" for i in range(4)])

    kept = AnalyteFilter().select_analytes(type1, percentile=0.10)

    assert 'gene0' in kept
    assert 'gene2' not in kept
    assert 'gene3' not in kept
    assert len(kept) == 18


def test_missingness_filter():
    values = np.ones((3, 10)) * np.arange(1, 11)
    values[1, :5] = np.nan
    values[2, :1] = np.nan
    type1 = pd.DataFrame(values, index=['a', 'b', 'c'], columns=[f"S{i}" for i in range(10)])

    filtered = filter_analytes(_dataset(type1), FilterConfig(type1_max_missing=0.2))

    assert filtered.type1.index.tolist() == ['a', 'c']


def test_cv_filter_drops_least_variable():
    samples = [f"S{i}" for i in range(6)]
    type1 = pd.DataFrame(
        [[10, 10.1, 9.9, 10, 10.05, 9.95],
         [10, 15, 5, 12, 8, 10],
         [10, 12, 8, 11, 9, 10]],
        index=['flat', 'wide', 'mid'],
        columns=samples,
        dtype=float,
    )

    kept = AnalyteFilter().select_analytes(type1, cv_percentile=0.34)

    assert kept == ['wide', 'mid']


def test_filter_does_not_mutate_input():
    type1 = pd.DataFrame(np.arange(40, dtype=float).reshape(10, 4), index=[f"g{i}" for i in range(10)],
                         columns=[f"S{i}" for i in range(4)])
    dataset = _dataset(type1)
    before = dataset.type1.copy()

    filter_analytes(dataset, FilterConfig(type1_percentile=0.5, type2_percentile=0.5))

    pd.testing.assert_frame_equal(dataset.type1, before)
    assert len(dataset.type2) == 3


@pytest.mark.parametrize('field', ['type1_percentile', 'type2_max_missing', 'type1_cv_percentile'])
def test_out_of_range_threshold_is_configuration_error(field):
    with pytest.raises(ConfigurationError):
        FilterConfig(**{field: 1.5})
    with pytest.raises(ConfigurationError):
        FilterConfig(**{field: -0.1})
