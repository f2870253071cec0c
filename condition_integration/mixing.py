#!/usr/bin/env python3
"""
Nearest-neighbor condition mixing metrics

A well-integrated embedding places cells from different conditions next to
each other when they are biologically alike. These metrics look at each
cell's k nearest neighbors and ask how many come from another condition.
"""

import numpy as np
import pandas as pd
from sklearn.neighbors import NearestNeighbors

from condition_integration.params import MIXING_PARAMS


def knn_indices(embedding, n_neighbors=MIXING_PARAMS["n_neighbors"]):
    """Indices of each cell's nearest neighbors, excluding the cell itself

    Args:
        embedding: cells x dims array
        n_neighbors: Neighbors per cell (clipped to n_cells - 1)

    Returns:
        cells x k integer array
    """
    embedding = np.asarray(embedding, dtype=float)
    n_cells = embedding.shape[0]
    if n_cells < 2:
        raise ValueError(f"Need at least 2 cells for neighbor metrics, got {n_cells}")

    k = min(max(int(n_neighbors), 1), n_cells - 1)
    nbrs = NearestNeighbors(n_neighbors=k)
    nbrs.fit(embedding)
    # kneighbors() without X leaves each point out of its own neighborhood
    return nbrs.kneighbors(return_distance=False)


def condition_mixing_fraction(embedding, labels, n_neighbors=MIXING_PARAMS["n_neighbors"]):
    """Per-cell fraction of neighbors from a different condition

    Returns:
        1D array with values in [0, 1]
    """
    labels = np.asarray(labels)
    indices = knn_indices(embedding, n_neighbors)
    return (labels[indices] != labels[:, None]).mean(axis=1)


def expected_mixing_fraction(labels):
    """Mixing fraction expected if neighbors were drawn regardless of condition"""
    freqs = pd.Series(np.asarray(labels)).value_counts(normalize=True)
    return float(1.0 - np.sum(freqs.to_numpy() ** 2))


def compute_lisi(embedding, labels, n_neighbors=MIXING_PARAMS["n_neighbors"]):
    """Per-cell inverse Simpson index of neighbor labels

    1 means all neighbors share one label; the number of conditions is the
    maximum, reached when neighbors are perfectly balanced.
    """
    labels = np.asarray(labels)
    indices = knn_indices(embedding, n_neighbors)

    lisi_values = np.zeros(indices.shape[0], dtype=float)
    for i, neigh in enumerate(indices):
        _, counts = np.unique(labels[neigh], return_counts=True)
        probs = counts / counts.sum()
        lisi_values[i] = 1.0 / np.sum(probs**2)
    return lisi_values


def mixing_summary(embeddings, labels, n_neighbors=MIXING_PARAMS["n_neighbors"]):
    """Compare condition mixing across several embeddings

    Args:
        embeddings: Dict of name -> cells x dims array
        labels: Condition label per cell
        n_neighbors: Neighbors per cell

    Returns:
        DataFrame with one row per embedding
    """
    expected = expected_mixing_fraction(labels)

    rows = []
    for name, emb in embeddings.items():
        mixing = condition_mixing_fraction(emb, labels, n_neighbors)
        lisi = compute_lisi(emb, labels, n_neighbors)
        rows.append(
            {
                "embedding": name,
                "mixing_fraction": float(mixing.mean()),
                "expected_fraction": expected,
                "relative_mixing": float(mixing.mean() / expected) if expected > 0 else np.nan,
                "median_lisi": float(np.median(lisi)),
            }
        )

    return pd.DataFrame(rows)
