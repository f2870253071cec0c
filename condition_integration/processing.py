#!/usr/bin/env python3
"""
Processing utilities for multi-condition single-cell RNA-seq analysis
Handles normalization, HVG selection, PCA, UMAP, and clustering
"""

import scanpy as sc
import matplotlib.pyplot as plt
import os

from condition_integration.params import PREPROCESS_PARAMS


def normalize_and_log(adata, target_sum=PREPROCESS_PARAMS["target_sum"]):
    """Library-size normalize and log-transform counts

    Raw counts are kept in layers["counts"] for pseudobulk DE.

    Args:
        adata: AnnData object with raw counts in X
        target_sum: Counts per cell after normalization

    Returns:
        AnnData object with log-normalized X
    """
    print("Normalizing and log-transforming...")

    if "counts" not in adata.layers:
        adata.layers["counts"] = adata.X.copy()

    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata)

    # Save full log-normalized data
    adata.raw = adata

    return adata


def select_hvgs(adata, n_top_genes=PREPROCESS_PARAMS["n_top_genes"], batch_key=None):
    """Keep only highly variable genes

    Args:
        adata: Log-normalized AnnData object
        n_top_genes: Number of genes to keep
        batch_key: Optional obs column for batch-aware selection

    Returns:
        New AnnData object restricted to HVGs
    """
    n_top_genes = min(n_top_genes, adata.n_vars)
    print(f"Selecting {n_top_genes:,} highly variable genes...")

    sc.pp.highly_variable_genes(adata, n_top_genes=n_top_genes, batch_key=batch_key)
    return adata[:, adata.var.highly_variable].copy()


def run_pca_umap_clustering(
    adata,
    n_pcs=PREPROCESS_PARAMS["n_pcs"],
    n_neighbors=PREPROCESS_PARAMS["n_neighbors"],
    resolution=PREPROCESS_PARAMS["resolution"],
    scale=True,
    save_dir=None,
):
    """Run PCA, UMAP and clustering on the pooled (unintegrated) data

    Args:
        adata: Log-normalized AnnData object (HVGs)
        n_pcs: Number of principal components
        n_neighbors: kNN graph size
        resolution: Leiden resolution
        scale: Scale genes to unit variance before PCA. The unscaled
            log-normalized values are kept in layers["lognorm"].
        save_dir: Directory to save the elbow plot (optional)

    Returns:
        AnnData object with X_pca, X_umap and `leiden` clusters
    """
    n_pcs = min(n_pcs, adata.n_obs - 1, adata.n_vars - 1)

    adata.layers["lognorm"] = adata.X.copy()
    if scale:
        print("Scaling data...")
        sc.pp.scale(adata, max_value=PREPROCESS_PARAMS["max_scale_value"])

    print("Running PCA...")
    sc.tl.pca(adata, n_comps=n_pcs)

    if save_dir:
        os.makedirs(save_dir, exist_ok=True)
        sc.pl.pca_variance_ratio(adata, n_pcs=n_pcs, show=False)
        plt.savefig(os.path.join(save_dir, "pca_elbow_plot.png"), dpi=300, bbox_inches="tight")
        plt.close()
        print(f"  Saved: {save_dir}/pca_elbow_plot.png")

    print("Computing neighborhood graph...")
    sc.pp.neighbors(adata, n_neighbors=n_neighbors, n_pcs=n_pcs)

    print("Running UMAP...")
    sc.tl.umap(adata)

    print("Clustering...")
    sc.tl.leiden(adata, resolution=resolution, flavor="igraph", n_iterations=2, directed=False)

    return adata


def umap_from_representation(adata, use_rep, n_neighbors=PREPROCESS_PARAMS["n_neighbors"]):
    """Compute a UMAP on an alternative embedding (e.g. projected or Harmony)

    The kNN graph is stored under its own key and the UMAP is copied to
    obsm["X_umap_<use_rep>"], so the default X_umap is left untouched.

    Returns:
        obsm key of the new UMAP
    """
    print(f"Running UMAP on {use_rep}...")

    neighbors_key = f"neighbors_{use_rep}"
    umap_key = f"X_umap_{use_rep.removeprefix('X_')}"

    default_umap = adata.obsm.get("X_umap")
    sc.pp.neighbors(adata, n_neighbors=n_neighbors, use_rep=use_rep, key_added=neighbors_key)
    sc.tl.umap(adata, neighbors_key=neighbors_key)
    adata.obsm[umap_key] = adata.obsm["X_umap"].copy()

    if default_umap is not None:
        adata.obsm["X_umap"] = default_umap
    else:
        del adata.obsm["X_umap"]

    return umap_key


def plot_embeddings(adata, color_keys=("condition", "cell_type"), basis="umap", save_dir=None):
    """Plot an embedding colored by metadata columns

    Args:
        adata: AnnData object with obsm["X_<basis>"]
        color_keys: obs columns to color by, one panel each
        basis: Embedding name without the X_ prefix
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting embeddings...")

    color_keys = [key for key in color_keys if key in adata.obs]
    fig, axes = plt.subplots(1, len(color_keys), figsize=(6 * len(color_keys), 5), squeeze=False)

    for ax, key in zip(axes[0], color_keys):
        sc.pl.embedding(adata, basis=basis, color=key, title=key, ax=ax, show=False)

    plt.tight_layout()

    if save_dir:
        os.makedirs(save_dir, exist_ok=True)
        path = os.path.join(save_dir, f"{basis}_embeddings.png")
        fig.savefig(path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {path}")
        plt.close(fig)
    else:
        plt.show()
