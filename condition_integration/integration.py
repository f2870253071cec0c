#!/usr/bin/env python3
"""
Integration utilities: Harmony and a side-by-side comparison with the
manual reference projection
"""

import harmonypy as hm
import numpy as np

from condition_integration.mixing import mixing_summary
from condition_integration.params import MIXING_PARAMS, PROJECTION_PARAMS
from condition_integration.projection import project_adata


def run_harmony(adata, condition_key="condition", basis="X_pca", key_added="X_pca_harmony", **kwargs):
    """Correct a PCA embedding for condition with Harmony

    Args:
        adata: AnnData object with obsm[basis]
        condition_key: obs column to integrate over
        basis: Embedding to correct
        key_added: obsm key for the corrected embedding
        **kwargs: Passed to harmonypy (e.g. theta, max_iter_harmony)

    Returns:
        AnnData object with obsm[key_added]
    """
    if basis not in adata.obsm:
        raise ValueError(f"{basis} not found in adata.obsm - run PCA first")

    print(f"Running Harmony on {basis} over '{condition_key}'...")
    data_mat = np.asarray(adata.obsm[basis], dtype=np.float64)
    ho = hm.run_harmony(data_mat, adata.obs, condition_key, **kwargs)
    adata.obsm[key_added] = _harmony_embedding(ho.Z_corr, adata.n_obs)
    print(f"✓ Stored corrected embedding in obsm['{key_added}']")

    return adata


def _harmony_embedding(z_corr, n_obs):
    """Return Harmony's corrected matrix as cells x dims

    harmonypy < 2 returns dims x cells, later releases cells x dims.
    """
    z_corr = np.asarray(z_corr)
    if z_corr.ndim != 2 or n_obs not in z_corr.shape:
        raise ValueError(f"Unexpected Harmony output shape {z_corr.shape} for {n_obs} cells")
    if z_corr.shape[0] == n_obs:
        return z_corr
    return z_corr.T


def compare_integrations(
    adata,
    condition_key=PROJECTION_PARAMS["condition_key"],
    n_comps=PROJECTION_PARAMS["n_comps"],
    layer="lognorm",
    use_harmony=True,
    n_neighbors=MIXING_PARAMS["n_neighbors"],
):
    """Score condition mixing for the pooled PCA and each integration

    The manual projection is run once per condition as reference, which
    shows how much the result depends on that choice.

    Args:
        adata: AnnData object with X_pca (see `run_pca_umap_clustering`)
        condition_key: obs column with condition labels
        n_comps: Rank of the projection and number of PCs compared
        layer: Log-normalized layer used for the projection
        use_harmony: Also run and score Harmony
        n_neighbors: Neighbors for the mixing metrics

    Returns:
        DataFrame from `mixing_summary`, one row per embedding
    """
    if layer is not None and layer not in adata.layers:
        layer = None

    n_pcs = min(n_comps, adata.obsm["X_pca"].shape[1])
    embeddings = {"pca": adata.obsm["X_pca"][:, :n_pcs]}

    for reference in adata.obs[condition_key].astype(str).unique():
        key = f"X_proj_{reference}"
        project_adata(
            adata,
            condition_key=condition_key,
            reference=reference,
            n_comps=n_comps,
            layer=layer,
            key_added=key,
        )
        embeddings[f"projection (ref={reference})"] = adata.obsm[key]

    if use_harmony:
        run_harmony(adata, condition_key=condition_key)
        embeddings["harmony"] = adata.obsm["X_pca_harmony"][:, :n_pcs]

    labels = adata.obs[condition_key].astype(str).to_numpy()
    return mixing_summary(embeddings, labels, n_neighbors=n_neighbors)
