import numpy as np
import pandas as pd
import pytest

from analyte_pair_agent.config.settings import ModelConfig, ThresholdConfig
from analyte_pair_agent.exceptions import ConfigurationError
from analyte_pair_agent.pair_model_engine import PairModelEngine, PairModelResult
from analyte_pair_agent.result_processor import (
    ResultProcessor,
    add_group_correlations,
    export_significant_pairs
)
from analyte_pair_agent.stats import bh_fdr


def _result(coeffs, pvals, rsquared=None):
    n = len(coeffs)
    table = pd.DataFrame({
        'independent': [f"met{i}" for i in range(n)],
        'outcome': [f"gene{i}" for i in range(n)],
        'interaction_coeff': coeffs,
        'interaction_pval': pvals,
        'analyte_coeff': np.zeros(n),
        'analyte_pval': np.full(n, 0.5),
        'stype_coeff': coeffs,
        'stype_pval': pvals,
        'rsquared': rsquared if rsquared is not None else np.full(n, 0.5),
        'n_samples': np.full(n, 20),
    })
    return PairModelResult(table=table)


def test_bh_fdr_known_values():
    q = bh_fdr([0.01, 0.04, 0.03, 0.005])
    np.testing.assert_allclose(q, [0.02, 0.04, 0.04, 0.02])


def test_bh_fdr_ignores_missing_and_is_monotone():
    rng = np.random.default_rng(4)
    p = rng.uniform(0, 1, 200)
    p[::17] = np.nan

    q = bh_fdr(p)
    finite = np.isfinite(p)

    assert np.isnan(q[~finite]).all()
    assert (q[finite] >= p[finite]).all()
    order = np.argsort(p[finite])
    assert (np.diff(q[finite][order]) >= -1e-15).all()
    np.testing.assert_allclose(q[finite], bh_fdr(p[finite]))


def test_percentile_is_computed_over_all_fitted_pairs():
    result = _result(coeffs=[0.1, 0.2, 0.3, 0.4], pvals=[1e-5, 1e-5, 1e-5, 0.9])
    thresholds = ThresholdConfig(fdr_cutoff=0.05, coefficient_percentile=0.5)

    significant = ResultProcessor(thresholds).process(result)

    assert significant.coefficient_cutoff == pytest.approx(0.25)
    assert significant.table['interaction_coeff'].tolist() == [0.3]
    assert significant.n_tested == 4


def test_rsquared_cutoff_and_missing_rows():
    result = _result(
        coeffs=[0.5, -0.5, np.nan, 0.7],
        pvals=[1e-4, 1e-4, np.nan, 1e-4],
        rsquared=[0.9, 0.1, np.nan, 0.6],
    )

    significant = ResultProcessor(ThresholdConfig(rsquared_cutoff=0.5)).process(result)

    assert significant.pairs() == [('met0', 'gene0'), ('met3', 'gene3')]
    assert 'interaction_fdr' in significant.table.columns


def test_processing_is_idempotent_and_pure(planted_dataset):
    result = PairModelEngine().run(planted_dataset)
    before = result.table.copy()
    processor = ResultProcessor(ThresholdConfig(fdr_cutoff=0.1, coefficient_percentile=0.2))

    first = processor.process(result)
    second = processor.process(result)

    pd.testing.assert_frame_equal(first.table, second.table)
    pd.testing.assert_frame_equal(result.table, before)
    assert ('met2', 'gene3') in first.pair_keys()


def test_stype_coefficient_selects_main_effect_columns():
    result = _result(coeffs=[0.1, 0.9], pvals=[1e-6, 1e-6])
    table = result.table.copy()
    table['interaction_pval'] = 0.9
    result = PairModelResult(table=table)

    assert len(ResultProcessor(ThresholdConfig()).process(result)) == 0
    significant = ResultProcessor(ThresholdConfig(coefficient='stype')).process(result)
    assert len(significant) == 2
    assert 'stype_fdr' in significant.table.columns


def test_group_correlations_for_binary_phenotype(planted_dataset):
    result = PairModelEngine().run(planted_dataset)
    significant = ResultProcessor(ThresholdConfig(fdr_cutoff=0.001)).process(result)

    table = add_group_correlations(significant, planted_dataset, ModelConfig())

    assert {'cor_case', 'cor_control', 'cor_diff'}.issubset(table.columns)
    row = table[(table['independent'] == 'met2') & (table['outcome'] == 'gene3')].iloc[0]
    assert row['cor_control'] > 0.8
    assert row['cor_diff'] == pytest.approx(row['cor_control'] - row['cor_case'])


def test_group_correlations_need_categorical_phenotype(planted_dataset):
    significant = ResultProcessor().process(PairModelEngine().run(planted_dataset))
    with pytest.raises(ConfigurationError):
        add_group_correlations(significant, planted_dataset, ModelConfig(phenotype_kind='continuous'))


def test_export_writes_delimited_text(tmp_path, planted_dataset):
    significant = ResultProcessor().process(PairModelEngine().run(planted_dataset))

    path = export_significant_pairs(significant, str(tmp_path / 'pairs.tsv'))
    exported = pd.read_csv(path, sep='\t')

    assert exported[['independent', 'outcome']].values.tolist() == [list(p) for p in significant.pairs()]
    assert {'interaction_coeff', 'interaction_pval', 'rsquared', 'interaction_fdr'}.issubset(exported.columns)


def test_additional_coefficient_must_also_pass_fdr():
    result = _result(coeffs=[0.5, 0.6], pvals=[1e-6, 1e-6])
    table = result.table.copy()
    table['stype_pval'] = [1e-6, 0.9]
    result = PairModelResult(table=table)

    assert len(ResultProcessor(ThresholdConfig()).process(result)) == 2
    significant = ResultProcessor(ThresholdConfig(additional_coefficients=['stype'])).process(result)

    assert significant.pairs() == [('met0', 'gene0')]
    assert {'interaction_fdr', 'stype_fdr'}.issubset(significant.table.columns)
