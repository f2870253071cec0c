#!/usr/bin/env python3
"""
Differential expression analysis utilities for multi-condition experiments
Handles pseudobulk creation and statistical testing between conditions
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import sparse, stats
from statsmodels.stats.multitest import multipletests

from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

from condition_integration.params import DE_PARAMS

RESULT_COLUMNS = [
    "gene", "logFC", "P.Value", "adj.P.Val", "AveExpr",
    "cell_type", "contrast", "significant", "upregulated", "downregulated",
]


def _dense(X):
    return X.toarray() if sparse.issparse(X) else np.asarray(X)


def _flag_significant(results_df, de_params):
    results_df["significant"] = (
        (results_df["adj.P.Val"] < de_params["fdr_threshold"])
        & (results_df["logFC"].abs() > de_params["fc_threshold"])
        & results_df["adj.P.Val"].notna()
    )
    results_df["upregulated"] = results_df["significant"] & (results_df["logFC"] > 0)
    results_df["downregulated"] = results_df["significant"] & (results_df["logFC"] < 0)

    n_sig = results_df["significant"].sum()
    n_up = results_df["upregulated"].sum()
    n_down = results_df["downregulated"].sum()
    print(f"    ✓ {n_sig} significant genes ({n_up} up, {n_down} down)")

    return results_df


def create_pseudobulk(
    adata,
    sample_key="sample",
    celltype_key="cell_type",
    condition_key="condition",
    layer="counts",
    min_cells=DE_PARAMS["min_cells"],
):
    """Create pseudobulk samples by summing raw counts per sample and cell type

    Args:
        adata: AnnData object with raw counts in layers[layer] (or X)
        sample_key: obs column with replicate ids
        celltype_key: obs column with cell type labels
        condition_key: obs column with condition labels
        layer: Layer holding raw counts
        min_cells: Minimum cells required per pseudobulk sample

    Returns:
        Tuple of (pseudobulk_df genes x samples, sample_info_df)
    """
    print("Creating pseudobulk samples...")

    X = adata.layers[layer] if layer in adata.layers else adata.X
    group_ids = (
        adata.obs[sample_key].astype(str) + "--" + adata.obs[celltype_key].astype(str)
    )

    pseudobulk_data = []
    sample_info = []

    for group_id in group_ids.unique():
        mask = (group_ids == group_id).to_numpy()
        n_cells = int(mask.sum())
        if n_cells < min_cells:
            continue

        pseudobulk_data.append(np.asarray(X[mask].sum(axis=0)).ravel())

        sample_meta = adata.obs.loc[mask].iloc[0]
        sample_info.append(
            {
                "group_id": group_id,
                "sample_id": str(sample_meta[sample_key]),
                "celltype": str(sample_meta[celltype_key]),
                "condition": str(sample_meta[condition_key]),
                "n_cells": n_cells,
            }
        )

    sample_info_df = pd.DataFrame(
        sample_info, columns=["group_id", "sample_id", "celltype", "condition", "n_cells"]
    )
    pb_df = pd.DataFrame(
        np.array(pseudobulk_data).T.reshape(adata.n_vars, len(sample_info)),
        index=adata.var_names,
        columns=sample_info_df["group_id"].tolist(),
    )

    print(f"Created {pb_df.shape[1]} pseudobulk samples from {pb_df.shape[0]} genes")

    return pb_df, sample_info_df


def filter_genes_for_de(pb_df, min_count=DE_PARAMS["min_count"], min_samples=DE_PARAMS["min_samples_expr"]):
    """Keep genes expressed above `min_count` in at least `min_samples` samples"""
    print("Filtering genes for DE analysis...")

    expressed_mask = (pb_df >= min_count).sum(axis=1) >= min_samples
    pb_filtered = pb_df.loc[expressed_mask]

    print(f"Kept {pb_filtered.shape[0]} genes after filtering")

    return pb_filtered


def run_de_with_deseq2(counts_df, sample_info_df, contrast_name, group1, group2,
                       de_params=DE_PARAMS, cell_type=None):
    """Run DESeq2 differential expression for a single contrast

    Args:
        counts_df: Count matrix (genes × samples)
        sample_info_df: Sample metadata DataFrame
        contrast_name: Name of the contrast
        group1: Test condition
        group2: Reference condition
        de_params: DE parameters dictionary
        cell_type: Cell type being analyzed

    Returns:
        DataFrame with DE results or None
    """
    mask = sample_info_df["condition"].isin([group1, group2])
    contrast_samples = sample_info_df[mask].copy()

    if len(contrast_samples) < 4:
        print(f"  ⚠️  Skipping {contrast_name}: Only {len(contrast_samples)} samples")
        return None

    n1 = (contrast_samples["condition"] == group1).sum()
    n2 = (contrast_samples["condition"] == group2).sum()
    print(f"  Testing {contrast_name} ({n1} vs {n2} samples)")

    contrast_samples["condition"] = pd.Categorical(
        contrast_samples["condition"], categories=[group2, group1]
    )
    metadata_indexed = contrast_samples.set_index("group_id")

    # PyDESeq2 expects integer counts as samples × genes
    contrast_counts = counts_df[metadata_indexed.index]
    counts_transposed = pd.DataFrame(
        np.round(contrast_counts.values).astype(int).T,
        index=contrast_counts.columns,
        columns=contrast_counts.index,
    )

    try:
        dds = DeseqDataSet(
            counts=counts_transposed,
            metadata=metadata_indexed,
            design="~condition",
            refit_cooks=True,
            quiet=True,
        )
        dds.deseq2()

        stat_res = DeseqStats(dds, contrast=["condition", group1, group2], quiet=True)
        stat_res.summary()
        results_df = stat_res.results_df.copy()
    except (ValueError, KeyError, np.linalg.LinAlgError) as e:
        print(f"  ✗ Error running DESeq2: {e}")
        print(f"     Debug: counts shape = {counts_transposed.shape} (samples × genes)")
        return None

    results_df = results_df.rename(
        columns={
            "log2FoldChange": "logFC",
            "pvalue": "P.Value",
            "padj": "adj.P.Val",
            "baseMean": "AveExpr",
        }
    )
    results_df["gene"] = results_df.index
    results_df["cell_type"] = cell_type
    results_df["contrast"] = contrast_name

    results_df = _flag_significant(results_df, de_params)
    return results_df[RESULT_COLUMNS].reset_index(drop=True)


def run_de_with_wilcoxon(adata, condition_key, group1, group2, de_params=DE_PARAMS,
                         layer="lognorm", cell_type=None, contrast_name=None):
    """Cell-level Wilcoxon rank-sum test (fast, but ignores replicates)

    Cells are treated as independent samples, so p-values are optimistic;
    the labs use this to contrast against the pseudobulk results.

    Args:
        adata: AnnData object with log-normalized values in layers[layer] (or X)
        condition_key: obs column with condition labels
        group1: Test condition
        group2: Reference condition
        de_params: DE parameters dictionary
        layer: Layer with log-normalized values
        cell_type: Label recorded in the result table
        contrast_name: Defaults to "<group1>_vs_<group2>"

    Returns:
        DataFrame with DE results or None
    """
    contrast_name = contrast_name or f"{group1}_vs_{group2}"
    labels = adata.obs[condition_key].astype(str).to_numpy()
    mask1 = labels == str(group1)
    mask2 = labels == str(group2)

    if mask1.sum() == 0 or mask2.sum() == 0:
        print(f"  ⚠️  Skipping {contrast_name}: Missing groups")
        return None

    print(f"  Testing {contrast_name} ({mask1.sum()} vs {mask2.sum()} cells) [Wilcoxon]")

    X = _dense(adata.layers[layer] if layer in adata.layers else adata.X)
    x1, x2 = X[mask1], X[mask2]

    _, pvals = stats.mannwhitneyu(x1, x2, alternative="two-sided", axis=0)
    pvals = np.nan_to_num(pvals, nan=1.0)

    # log1p values -> log2 fold change of mean expression
    mean1 = np.expm1(x1).mean(axis=0)
    mean2 = np.expm1(x2).mean(axis=0)
    logfc = np.log2((mean1 + 1e-9) / (mean2 + 1e-9))

    results_df = pd.DataFrame(
        {
            "gene": adata.var_names,
            "logFC": logfc,
            "P.Value": pvals,
            "adj.P.Val": multipletests(pvals, method="fdr_bh")[1],
            "AveExpr": (x1.mean(axis=0) + x2.mean(axis=0)) / 2,
            "cell_type": cell_type,
            "contrast": contrast_name,
        }
    )

    results_df = _flag_significant(results_df, de_params)
    return results_df[RESULT_COLUMNS]


def run_de_for_celltype(pb_df, sample_info_df, cell_type, contrasts, de_params=DE_PARAMS,
                        min_samples_per_group=2):
    """Run pseudobulk DESeq2 for a specific cell type

    Args:
        pb_df: Pseudobulk expression DataFrame (genes × samples)
        sample_info_df: Sample metadata DataFrame
        cell_type: Cell type to analyze
        contrasts: List of (contrast_name, test_condition, reference_condition)
        de_params: Dictionary of DE parameters
        min_samples_per_group: Minimum number of samples per group required

    Returns:
        DataFrame with DE results or None
    """
    print(f"\n{'='*60}")
    print(f"ANALYZING: {cell_type}")
    print(f"{'='*60}")

    ct_samples = sample_info_df[sample_info_df["celltype"] == cell_type].copy()

    if len(ct_samples) < min_samples_per_group * 2:
        print(f"⚠️  Skipping {cell_type}: Only {len(ct_samples)} samples")
        return None

    ct_counts = filter_genes_for_de(
        pb_df[ct_samples["group_id"]],
        min_count=de_params["min_count"],
        min_samples=de_params["min_samples_expr"],
    )

    if ct_counts.shape[0] < de_params["min_genes"]:
        print(f"⚠️  Skipping {cell_type}: Only {ct_counts.shape[0]} genes after filtering")
        return None

    print(f"  Analyzing {ct_counts.shape[0]:,} genes across {len(ct_samples)} samples")

    results = []
    for contrast_name, group1, group2 in contrasts:
        result = run_de_with_deseq2(
            ct_counts, ct_samples, contrast_name, group1, group2, de_params, cell_type
        )
        if result is not None:
            results.append(result)

    if results:
        return pd.concat(results, ignore_index=True)
    return None


def plot_volcano(de_results, cell_type=None, contrast=None, fc_threshold=DE_PARAMS["fc_threshold"],
                 pval_threshold=DE_PARAMS["fdr_threshold"], save_path=None):
    """Plot volcano plot for DE results

    Args:
        de_results: DE results DataFrame
        cell_type: Cell type to plot (None = all rows)
        contrast: Contrast name (None = all rows)
        fc_threshold: Log2FC threshold for coloring
        pval_threshold: Adjusted p-value threshold for coloring
        save_path: Path to save figure. If provided, the figure is closed instead of shown.

    Returns:
        matplotlib Figure or None if there is nothing to plot
    """
    ct_results = de_results.copy()
    if cell_type is not None:
        ct_results = ct_results[ct_results["cell_type"] == cell_type]
    if contrast is not None:
        ct_results = ct_results[ct_results["contrast"] == contrast]

    if len(ct_results) == 0:
        print(f"No results for {cell_type} - {contrast}")
        return None

    ct_results["neg_log10_pval"] = -np.log10(ct_results["P.Value"] + 1e-300)

    sig = ct_results["adj.P.Val"] < pval_threshold
    up = sig & (ct_results["logFC"] > fc_threshold)
    down = sig & (ct_results["logFC"] < -fc_threshold)

    fig, ax = plt.subplots(figsize=(10, 8))

    ns_data = ct_results[~(up | down)]
    ax.scatter(ns_data["logFC"], ns_data["neg_log10_pval"], c="gray", alpha=0.5, s=20,
               label="Not significant")
    if up.any():
        ax.scatter(ct_results.loc[up, "logFC"], ct_results.loc[up, "neg_log10_pval"],
                   c="red", alpha=0.7, s=30, label=f"Upregulated (n={up.sum()})")
    if down.any():
        ax.scatter(ct_results.loc[down, "logFC"], ct_results.loc[down, "neg_log10_pval"],
                   c="blue", alpha=0.7, s=30, label=f"Downregulated (n={down.sum()})")

    ax.axvline(fc_threshold, color="black", linestyle="--", linewidth=1, alpha=0.5)
    ax.axvline(-fc_threshold, color="black", linestyle="--", linewidth=1, alpha=0.5)

    ax.set_xlabel("Log2 Fold Change", fontsize=12)
    ax.set_ylabel("-Log10(P-value)", fontsize=12)
    ax.set_title(f"{cell_type or 'All cells'} - {contrast or 'all contrasts'}\nVolcano Plot",
                 fontsize=14, fontweight="bold")
    ax.legend(loc="best")
    ax.grid(alpha=0.3)

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_path}")
        plt.close(fig)
    else:
        plt.show()

    return fig
