#!/usr/bin/env python3
"""
Manual cross-condition subspace projection

A lightweight, transparent alternative to black-box integration:

1. Center every condition on its own per-gene mean
2. Fit PCA on the centered reference condition only
3. Project every condition (reference included) onto that basis

Matrices here are genes x cells, the orientation used in the lab slides.
`project_adata` wraps the procedure for AnnData objects (cells x genes).

Note that the result depends on which condition is the reference: the
basis only captures the reference's variance structure, so swapping the
reference gives a different embedding.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.decomposition import PCA


class ProjectionError(ValueError):
    """Invalid input dimensions or rank for the subspace projection"""


@dataclass
class ProjectionResult:
    """Output of `project_conditions`

    Attributes:
        coordinates: P x n_cells projected coordinates, input column order
        basis: n_genes x P orthonormal reference basis
        group_means: n_genes x n_conditions per-condition gene means
        labels: Condition label of every column of `coordinates`
        reference: Condition the basis was fit on
        explained_variance_ratio: Variance explained by each basis vector
            within the reference condition
    """

    coordinates: np.ndarray
    basis: np.ndarray
    group_means: pd.DataFrame
    labels: np.ndarray
    reference: object
    explained_variance_ratio: np.ndarray

    @property
    def n_comps(self):
        return self.basis.shape[1]

    def to_frame(self, obs_names=None):
        """Cells x P table with a `condition` column for plotting"""
        columns = [f"proj_{i + 1}" for i in range(self.n_comps)]
        df = pd.DataFrame(self.coordinates.T, columns=columns, index=obs_names)
        df["condition"] = self.labels
        return df


def _as_matrix(X):
    if sparse.issparse(X):
        X = X.toarray()
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ProjectionError(f"Expected a 2D genes x cells matrix, got {X.ndim}D")
    if not np.isfinite(X).all():
        raise ProjectionError("Expression matrix contains NaN or infinite values")
    return X


def _as_labels(labels, n_obs):
    labels = np.asarray(labels)
    if labels.ndim != 1 or labels.shape[0] != n_obs:
        raise ProjectionError(
            f"Got {labels.size} condition labels for {n_obs} cells"
        )
    return labels


def split_by_condition(labels):
    """Group column indices by condition label

    Args:
        labels: One condition label per cell

    Returns:
        Dict of condition -> ascending column indices, conditions in order
        of first appearance
    """
    labels = np.asarray(labels)
    return {cond: np.flatnonzero(labels == cond) for cond in pd.unique(labels)}


def center_matrix(X):
    """Subtract the per-gene mean from a genes x cells matrix

    Returns:
        Tuple of (centered copy, per-gene mean)
    """
    X = _as_matrix(X)
    if X.shape[1] == 0:
        raise ProjectionError("Cannot center a group with zero cells")
    mean = X.mean(axis=1)
    return X - mean[:, None], mean


def center_groups(X, labels):
    """Center each condition on its own per-gene mean

    Args:
        X: genes x cells expression matrix
        labels: One condition label per cell

    Returns:
        Tuple of (centered matrix with the shape of X, DataFrame of
        per-condition gene means with one column per condition)
    """
    X = _as_matrix(X)
    labels = _as_labels(labels, X.shape[1])

    centered = np.empty_like(X)
    means = {}
    for cond, idx in split_by_condition(labels).items():
        centered[:, idx], means[cond] = center_matrix(X[:, idx])

    return centered, pd.DataFrame(means)


def fit_reference_basis(X_ref_centered, n_comps):
    """Fit a rank-P PCA basis on the centered reference condition

    Args:
        X_ref_centered: genes x cells centered reference matrix
        n_comps: Rank P of the basis

    Returns:
        Tuple of (genes x P basis with orthonormal columns, explained
        variance ratio of each component)
    """
    X_ref_centered = _as_matrix(X_ref_centered)
    n_genes, n_cells = X_ref_centered.shape
    max_comps = min(n_genes, n_cells - 1)

    if isinstance(n_comps, bool) or not isinstance(n_comps, (int, np.integer)):
        raise ProjectionError(f"n_comps must be an integer, got {n_comps!r}")
    if not 1 <= n_comps <= max_comps:
        raise ProjectionError(
            f"n_comps={n_comps} is outside [1, {max_comps}] for a reference "
            f"of {n_genes} genes x {n_cells} cells"
        )

    # sklearn expects samples x features
    pca = PCA(n_components=int(n_comps), svd_solver="full")
    try:
        pca.fit(X_ref_centered.T)
    except ValueError as e:
        raise ProjectionError(str(e)) from e

    return pca.components_.T, pca.explained_variance_ratio_


def project_onto_basis(basis, X_centered):
    """Express centered cells as coordinates along the basis (P x cells)"""
    basis = np.asarray(basis, dtype=float)
    X_centered = _as_matrix(X_centered)
    if basis.ndim != 2 or basis.shape[0] != X_centered.shape[0]:
        raise ProjectionError(
            f"Basis of shape {basis.shape} does not match {X_centered.shape[0]} genes"
        )
    return basis.T @ X_centered


def project_conditions(X, labels, reference, n_comps):
    """Project all conditions onto the reference condition's PCA subspace

    Args:
        X: genes x cells expression matrix (log-normalized)
        labels: One condition label per cell
        reference: Label of the condition that defines the subspace
        n_comps: Rank P of the subspace

    Returns:
        ProjectionResult with P x cells coordinates in input column order
    """
    X = _as_matrix(X)
    labels = _as_labels(labels, X.shape[1])
    groups = split_by_condition(labels)

    if reference not in groups:
        raise ProjectionError(
            f"Reference condition {reference!r} not found in {list(groups)}"
        )

    centered, means = center_groups(X, labels)
    basis, evr = fit_reference_basis(centered[:, groups[reference]], n_comps)

    coordinates = np.empty((basis.shape[1], X.shape[1]))
    for cond, idx in groups.items():
        coordinates[:, idx] = project_onto_basis(basis, centered[:, idx])

    return ProjectionResult(
        coordinates=coordinates,
        basis=basis,
        group_means=means,
        labels=labels,
        reference=reference,
        explained_variance_ratio=evr,
    )


def reconstruct(result, condition):
    """Map a condition's coordinates back to gene space

    Returns:
        genes x cells rank-P approximation of the condition's data
    """
    if condition not in result.group_means.columns:
        raise ProjectionError(f"Unknown condition {condition!r}")
    idx = np.flatnonzero(result.labels == condition)
    mean = result.group_means[condition].to_numpy()
    return result.basis @ result.coordinates[:, idx] + mean[:, None]


def project_adata(
    adata,
    condition_key="condition",
    reference="ctrl",
    n_comps=20,
    layer=None,
    key_added="X_proj",
):
    """Run the manual projection on an AnnData object

    Args:
        adata: AnnData object (cells x genes), log-normalized
        condition_key: obs column with condition labels
        reference: Condition defining the subspace
        n_comps: Rank P of the subspace
        layer: Layer to use instead of adata.X
        key_added: obsm key for the cells x P coordinates

    Returns:
        ProjectionResult (coordinates are also stored in adata.obsm[key_added])
    """
    print(f"Projecting conditions onto the '{reference}' subspace (P={n_comps})...")

    X = adata.layers[layer] if layer is not None else adata.X
    if sparse.issparse(X):
        X = X.toarray()

    labels = adata.obs[condition_key].astype(str).to_numpy()
    result = project_conditions(np.asarray(X).T, labels, str(reference), n_comps)

    adata.obsm[key_added] = result.coordinates.T
    adata.varm[f"{key_added}_basis"] = result.basis
    adata.uns[key_added] = {
        "condition_key": condition_key,
        "reference": str(reference),
        "n_comps": int(n_comps),
        "explained_variance_ratio": result.explained_variance_ratio,
    }

    print(
        f"  ✓ {result.coordinates.shape[1]:,} cells projected; reference PCs explain "
        f"{result.explained_variance_ratio.sum() * 100:.1f}% of its variance"
    )
    return result
