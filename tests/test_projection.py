"""Tests for the manual cross-condition subspace projection."""

import numpy as np
import pytest

from condition_integration.projection import (
    ProjectionError,
    ProjectionResult,
    center_groups,
    center_matrix,
    fit_reference_basis,
    project_adata,
    project_conditions,
    project_onto_basis,
    reconstruct,
    split_by_condition,
)


class TestSplitAndCenter:
    def test_split_keeps_first_appearance_order(self):
        groups = split_by_condition(["b", "a", "b", "c", "a"])
        assert list(groups) == ["b", "a", "c"]
        np.testing.assert_array_equal(groups["a"], [1, 4])

    def test_each_group_mean_is_zero(self, two_group_matrix):
        X, labels = two_group_matrix
        centered, means = center_groups(X, labels)

        assert centered.shape == X.shape
        for cond in ("ref", "treated"):
            np.testing.assert_allclose(centered[:, labels == cond].mean(axis=1), 0, atol=1e-12)
            np.testing.assert_allclose(means[cond], X[:, labels == cond].mean(axis=1))

    def test_input_not_mutated(self, two_group_matrix):
        X, labels = two_group_matrix
        original = X.copy()
        center_groups(X, labels)
        np.testing.assert_array_equal(X, original)

    def test_empty_group_rejected(self):
        with pytest.raises(ProjectionError):
            center_matrix(np.zeros((4, 0)))


class TestFitReferenceBasis:
    def test_basis_is_orthonormal(self, two_group_matrix):
        X, labels = two_group_matrix
        centered, _ = center_groups(X, labels)
        basis, evr = fit_reference_basis(centered[:, labels == "ref"], 2)

        assert basis.shape == (4, 2)
        np.testing.assert_allclose(basis.T @ basis, np.eye(2), atol=1e-10)
        assert evr.shape == (2,)
        assert evr[0] >= evr[1]

    @pytest.mark.parametrize("n_comps", [0, 5, 8])
    def test_rank_outside_range_rejected(self, two_group_matrix, n_comps):
        X, labels = two_group_matrix
        centered, _ = center_groups(X, labels)
        with pytest.raises(ProjectionError):
            fit_reference_basis(centered[:, labels == "ref"], n_comps)

    def test_rank_limited_by_cells(self):
        # 3 cells span at most 2 centered dimensions
        X = np.random.default_rng(0).normal(size=(10, 3))
        centered, _ = center_matrix(X)
        with pytest.raises(ProjectionError):
            fit_reference_basis(centered, 3)
        basis, _ = fit_reference_basis(centered, 2)
        assert basis.shape == (10, 2)

    def test_non_integer_rank_rejected(self, two_group_matrix):
        X, labels = two_group_matrix
        with pytest.raises(ProjectionError):
            fit_reference_basis(X[:, labels == "ref"], 2.0)

    def test_projection_error_is_value_error(self):
        assert issubclass(ProjectionError, ValueError)


class TestProjectConditions:
    def test_scenario_shapes_and_order(self, two_group_matrix):
        X, labels = two_group_matrix
        result = project_conditions(X, labels, "ref", 2)

        assert isinstance(result, ProjectionResult)
        assert result.coordinates.shape == (2, 14)
        assert result.basis.shape == (4, 2)
        np.testing.assert_array_equal(result.labels, labels)

        ref_mean = X[:, :8].mean(axis=1, keepdims=True)
        treated_mean = X[:, 8:].mean(axis=1, keepdims=True)
        np.testing.assert_allclose(result.coordinates[:, :8], result.basis.T @ (X[:, :8] - ref_mean))
        np.testing.assert_allclose(result.coordinates[:, 8:], result.basis.T @ (X[:, 8:] - treated_mean))

    def test_interleaved_columns_keep_input_order(self, two_group_matrix):
        X, labels = two_group_matrix
        order = np.random.default_rng(3).permutation(X.shape[1])
        shuffled = project_conditions(X[:, order], labels[order], "ref", 2)
        ordered = project_conditions(X, labels, "ref", 2)

        np.testing.assert_allclose(shuffled.basis.T @ ordered.basis, np.eye(2), atol=1e-8)
        np.testing.assert_allclose(shuffled.coordinates, ordered.coordinates[:, order], atol=1e-10)

    def test_reconstruction_exact_at_full_rank(self, two_group_matrix):
        X, labels = two_group_matrix
        result = project_conditions(X, labels, "ref", 4)
        np.testing.assert_allclose(reconstruct(result, "ref"), X[:, :8], atol=1e-10)

    def test_reconstruction_error_matches_truncation(self, two_group_matrix):
        X, labels = two_group_matrix
        result = project_conditions(X, labels, "ref", 2)

        X_ref = X[:, :8]
        centered = X_ref - X_ref.mean(axis=1, keepdims=True)
        singular_values = np.linalg.svd(centered, compute_uv=False)
        error = ((X_ref - reconstruct(result, "ref")) ** 2).sum()

        np.testing.assert_allclose(error, (singular_values[2:] ** 2).sum(), rtol=1e-8)

    def test_swapping_reference_changes_embedding(self, two_group_matrix):
        X, labels = two_group_matrix
        ref_result = project_conditions(X, labels, "ref", 2)
        treated_result = project_conditions(X, labels, "treated", 2)

        assert ref_result.coordinates.shape == treated_result.coordinates.shape
        assert not np.allclose(np.abs(ref_result.coordinates), np.abs(treated_result.coordinates))

    def test_unknown_reference(self, two_group_matrix):
        X, labels = two_group_matrix
        with pytest.raises(ProjectionError, match="not found"):
            project_conditions(X, labels, "missing", 2)

    def test_label_count_mismatch(self, two_group_matrix):
        X, labels = two_group_matrix
        with pytest.raises(ProjectionError):
            project_conditions(X, labels[:-1], "ref", 2)

    def test_non_finite_values(self, two_group_matrix):
        X, labels = two_group_matrix
        X = X.copy()
        X[0, 0] = np.nan
        with pytest.raises(ProjectionError):
            project_conditions(X, labels, "ref", 2)

    def test_one_dimensional_input(self):
        with pytest.raises(ProjectionError):
            project_conditions(np.ones(5), ["a"] * 5, "a", 1)

    def test_basis_gene_mismatch(self, two_group_matrix):
        X, _ = two_group_matrix
        with pytest.raises(ProjectionError):
            project_onto_basis(np.eye(3)[:, :2], X)

    def test_three_conditions(self):
        rng = np.random.default_rng(11)
        X = rng.normal(size=(6, 30))
        labels = np.repeat(["a", "b", "c"], 10)
        result = project_conditions(X, labels, "b", 3)

        assert result.coordinates.shape == (3, 30)
        assert list(result.group_means.columns) == ["a", "b", "c"]

    def test_to_frame(self, two_group_matrix):
        X, labels = two_group_matrix
        df = project_conditions(X, labels, "ref", 2).to_frame()
        assert list(df.columns) == ["proj_1", "proj_2", "condition"]
        assert len(df) == 14


class TestProjectAdata:
    def test_stores_coordinates(self, sim_adata):
        import scanpy as sc

        sc.pp.normalize_total(sim_adata, target_sum=1e4)
        sc.pp.log1p(sim_adata)
        result = project_adata(sim_adata, "condition", "ctrl", n_comps=5)

        assert sim_adata.obsm["X_proj"].shape == (sim_adata.n_obs, 5)
        assert sim_adata.varm["X_proj_basis"].shape == (sim_adata.n_vars, 5)
        assert sim_adata.uns["X_proj"]["reference"] == "ctrl"
        np.testing.assert_allclose(sim_adata.obsm["X_proj"], result.coordinates.T)

    def test_centered_projection_means_are_zero(self, sim_adata):
        result = project_adata(sim_adata, "condition", "stim", n_comps=3, layer="counts")
        for cond in ("ctrl", "stim"):
            cond_coords = result.coordinates[:, result.labels == cond]
            np.testing.assert_allclose(cond_coords.mean(axis=1), 0, atol=1e-8)
