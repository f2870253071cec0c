#!/usr/bin/env python3
"""
Neighborhood-level differential abundance between two conditions

Milo-style walkthrough: sample a subset of cells as neighborhood centers,
take each center's kNN set in an integrated embedding, and test whether the
test condition is over- or under-represented relative to its overall share.
"""

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from condition_integration.mixing import knn_indices
from condition_integration.params import NEIGHBORHOOD_PARAMS


def sample_neighborhoods(
    embedding,
    sample_fraction=NEIGHBORHOOD_PARAMS["sample_fraction"],
    n_neighbors=NEIGHBORHOOD_PARAMS["n_neighbors"],
    seed=NEIGHBORHOOD_PARAMS["seed"],
):
    """Pick neighborhood centers and their member cells

    Args:
        embedding: cells x dims integrated embedding
        sample_fraction: Fraction of cells used as centers (at least one)
        n_neighbors: Neighbors per center
        seed: Random seed for center sampling

    Returns:
        Tuple of (center indices, centers x (k + 1) member indices; the
        first member of each row is the center itself)
    """
    indices = knn_indices(embedding, n_neighbors)
    n_cells = indices.shape[0]

    rng = np.random.default_rng(seed)
    n_centers = max(1, int(round(sample_fraction * n_cells)))
    centers = np.sort(rng.choice(n_cells, size=n_centers, replace=False))

    members = np.hstack([centers[:, None], indices[centers]])
    return centers, members


def neighborhood_abundance(
    embedding,
    labels,
    test_condition,
    sample_fraction=NEIGHBORHOOD_PARAMS["sample_fraction"],
    n_neighbors=NEIGHBORHOOD_PARAMS["n_neighbors"],
    fdr_threshold=NEIGHBORHOOD_PARAMS["fdr_threshold"],
    seed=NEIGHBORHOOD_PARAMS["seed"],
    obs_names=None,
):
    """Binomial test of the test condition's share in each neighborhood

    Args:
        embedding: cells x dims integrated embedding
        labels: Condition label per cell
        test_condition: Condition whose enrichment is tested
        sample_fraction: Fraction of cells used as neighborhood centers
        n_neighbors: Neighbors per center
        fdr_threshold: BH-adjusted threshold for the `significant` flag
        seed: Random seed
        obs_names: Optional cell names for the `center` column

    Returns:
        DataFrame with one row per neighborhood
    """
    labels = np.asarray(labels).astype(str)
    test_condition = str(test_condition)
    if test_condition not in labels:
        raise ValueError(f"Condition {test_condition!r} not found in labels")

    global_share = float((labels == test_condition).mean())
    if global_share == 1.0:
        raise ValueError("All cells belong to the test condition; nothing to compare")

    print(f"Testing neighborhoods for '{test_condition}' enrichment (global share {global_share:.2f})...")

    centers, members = sample_neighborhoods(embedding, sample_fraction, n_neighbors, seed)
    in_test = labels[members] == test_condition
    n_test = in_test.sum(axis=1)
    size = members.shape[1]

    pvals = np.array(
        [stats.binomtest(int(k), size, global_share).pvalue for k in n_test]
    )

    # pseudocount keeps empty neighborhoods finite
    share = (n_test + 0.5) / (size + 1.0)
    log2fc = np.log2(share / (1 - share)) - np.log2(global_share / (1 - global_share))

    results = pd.DataFrame(
        {
            "center": np.asarray(obs_names)[centers] if obs_names is not None else centers,
            "center_idx": centers,
            "size": size,
            "n_test": n_test,
            "n_other": size - n_test,
            "log2FC": log2fc,
            "P.Value": pvals,
            "adj.P.Val": multipletests(pvals, method="fdr_bh")[1],
        }
    )
    results["significant"] = results["adj.P.Val"] < fdr_threshold

    print(f"  ✓ {results['significant'].sum()} of {len(results)} neighborhoods differentially abundant")
    return results


def annotate_neighborhoods(results, adata, key="cell_type"):
    """Label each neighborhood with its center cell's `key` value"""
    results = results.copy()
    results[key] = adata.obs[key].iloc[results["center_idx"].to_numpy()].astype(str).to_numpy()
    return results
