"""Shared fixtures for the lab utility tests."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from condition_integration.data_loader import simulate_condition_dataset


@pytest.fixture
def two_group_matrix():
    """4 genes x 14 cells: 8 reference cells followed by 6 treated cells."""
    rng = np.random.default_rng(7)
    ref = rng.normal(loc=[[1.0], [2.0], [0.5], [3.0]], scale=[[1.0], [0.5], [2.0], [0.3]], size=(4, 8))
    treated = rng.normal(loc=[[4.0], [0.0], [1.5], [1.0]], scale=[[0.2], [1.5], [0.4], [1.0]], size=(4, 6))
    X = np.hstack([ref, treated])
    labels = np.array(["ref"] * 8 + ["treated"] * 6)
    return X, labels


@pytest.fixture
def sim_adata():
    """Small simulated ctrl/stim dataset with raw counts."""
    return simulate_condition_dataset(n_cells=300, n_genes=200, seed=1)
