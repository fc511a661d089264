import numpy as np
import pandas as pd
import pytest

from analyte_pair_agent.data_store import OmicsDataset


def make_dataset(seed=0, n_samples=20, n_independent=5, n_outcome=5,
                 planted=(2, 3), continuous=False, noise=0.3):
    """Synthetic dataset with one engineered interaction pair.

    type2 holds the independent analytes, type1 the outcomes. The planted
    outcome depends on the planted independent analyte only in the second
    phenotype group (or proportionally to a continuous phenotype).
    """
    rng = np.random.default_rng(seed)
    samples = [f"S{i:02d}" for i in range(n_samples)]

    if continuous:
        phenotype_values = rng.uniform(0, 1, n_samples)
        group = pd.Series(phenotype_values, index=samples, name='group')
        p = phenotype_values
    else:
        labels = np.array(['control'] * (n_samples // 2) + ['case'] * (n_samples - n_samples // 2))
        group = pd.Series(labels, index=samples, name='group')
        p = (labels == 'control').astype(float)  # 'case' is the reference level

    independent = rng.normal(10, 2, (n_independent, n_samples))
    outcome = rng.normal(5, 1, (n_outcome, n_samples))
    if planted is not None:
        i, j = planted
        x = independent[i]
        outcome[j] = 5 + 3.0 * (x - 10) * p + rng.normal(0, noise, n_samples)

    type2 = pd.DataFrame(independent, index=[f"met{i}" for i in range(n_independent)], columns=samples)
    type1 = pd.DataFrame(outcome, index=[f"gene{j}" for j in range(n_outcome)], columns=samples)
    phenotype = pd.DataFrame({'group': group})
    return OmicsDataset(type1=type1, type2=type2, phenotype=phenotype)


@pytest.fixture
def planted_dataset():
    return make_dataset()


@pytest.fixture
def dataset_factory():
    return make_dataset
