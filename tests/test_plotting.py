"""Tests for the long-format helper and plotting functions."""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from condition_integration.mixing import mixing_summary
from condition_integration.plotting import (
    plot_group_distributions,
    plot_mixing_comparison,
    plot_projection,
    vectors_to_long,
)
from condition_integration.projection import project_conditions


class TestVectorsToLong:
    def test_list_of_unequal_vectors(self):
        long_df = vectors_to_long([[1, 2, 3], np.array([4.0, 5.0])], names=["a", "b"])

        assert list(long_df.columns) == ["group", "index", "value"]
        assert list(long_df["group"]) == ["a", "a", "a", "b", "b"]
        assert list(long_df["index"]) == [0, 1, 2, 0, 1]
        assert list(long_df["value"]) == [1, 2, 3, 4, 5]

    def test_dict_input_and_column_names(self):
        long_df = vectors_to_long(
            {"pca": [0.1, 0.2], "harmony": [0.4]}, value_name="mixing", group_name="embedding"
        )
        assert list(long_df.columns) == ["embedding", "index", "mixing"]
        assert list(long_df["embedding"].cat.categories) == ["pca", "harmony"]

    def test_default_names(self):
        long_df = vectors_to_long([[1], [2]])
        assert list(long_df["group"]) == ["0", "1"]

    def test_name_count_mismatch(self):
        with pytest.raises(ValueError):
            vectors_to_long([[1], [2]], names=["only_one"])

    def test_dict_with_names_rejected(self):
        with pytest.raises(ValueError):
            vectors_to_long({"a": [1]}, names=["a"])

    def test_empty(self):
        long_df = vectors_to_long([])
        assert long_df.empty
        assert list(long_df.columns) == ["group", "index", "value"]


class TestPlots:
    def test_projection_plot(self, two_group_matrix):
        X, labels = two_group_matrix
        fig = plot_projection(project_conditions(X, labels, "ref", 2))
        assert fig.axes[0].get_xlabel().startswith("proj_1")
        plt.close(fig)

    def test_distribution_plot_saves(self, tmp_path):
        long_df = vectors_to_long({"a": np.arange(10.0), "b": np.arange(5.0)})
        path = tmp_path / "violin.png"
        plot_group_distributions(long_df, save_path=path)
        assert path.exists()

    def test_mixing_plot(self):
        rng = np.random.default_rng(0)
        labels = np.array(["a", "b"] * 20)
        summary = mixing_summary({"x": rng.normal(size=(40, 2))}, labels, n_neighbors=5)
        fig = plot_mixing_comparison(summary)
        assert isinstance(summary, pd.DataFrame)
        plt.close(fig)
