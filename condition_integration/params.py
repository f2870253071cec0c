#!/usr/bin/env python3
"""
Analysis parameters for the multi-condition integration labs

This file centralizes all tunable values used by the lab notebooks.
Modify these values (or override them in a notebook's parameter cell)
to adjust the analysis.
"""

# Normalization / feature selection
PREPROCESS_PARAMS = {
    "target_sum": 1e4,  # Counts per cell after library-size normalization
    "n_top_genes": 2000,  # Highly variable genes kept for PCA
    "max_scale_value": 10,  # Clip scaled values
    "n_pcs": 30,  # Principal components used for neighbors/UMAP
    "n_neighbors": 15,  # kNN graph size for UMAP / Leiden
    "resolution": 0.8,  # Leiden resolution
}

# Manual cross-condition projection
PROJECTION_PARAMS = {
    "condition_key": "condition",  # obs column holding condition labels
    "reference": "ctrl",  # Condition whose variance defines the subspace
    "n_comps": 20,  # Rank P of the reference basis
    "key_added": "X_proj",  # obsm key for projected coordinates
}

# Condition mixing metrics
MIXING_PARAMS = {
    "n_neighbors": 30,  # Neighbors inspected per cell
}

# Pseudobulk differential expression
DE_PARAMS = {
    "min_cells": 10,  # Minimum cells per pseudobulk sample
    "min_count": 5,  # Minimum count for a gene to count as expressed
    "min_samples_expr": 2,  # Samples in which a gene must be expressed
    "min_genes": 20,  # Skip cell types with fewer genes after filtering
    "fdr_threshold": 0.05,
    "fc_threshold": 0.5,  # |log2 fold change|
}

# Neighborhood differential abundance
NEIGHBORHOOD_PARAMS = {
    "sample_fraction": 0.1,  # Fraction of cells used as neighborhood centers
    "n_neighbors": 30,
    "fdr_threshold": 0.1,
    "seed": 0,
}

# LC chromatogram preprocessing
METABOLOMICS_PARAMS = {
    "rt_column": "RT(min)",
    "rt_start": 0.5,  # Drop the injection front
    "rt_end": None,  # None = keep until the end of the run
    "peak_height": 0.02,  # Relative to each sample's maximum intensity
    "peak_distance": 5,  # Minimum points between peaks
    "peak_prominence": 0.01,  # Relative prominence
    "rt_tolerance": 0.05,  # Minutes; peaks closer than this are one feature
}


def get_param_summary():
    """Return a formatted summary of current parameter settings"""
    summary = [
        "=== Analysis Parameters ===",
        "\nPreprocessing:",
        f"  - HVGs: {PREPROCESS_PARAMS['n_top_genes']}",
        f"  - PCs / neighbors: {PREPROCESS_PARAMS['n_pcs']} / {PREPROCESS_PARAMS['n_neighbors']}",
        "\nProjection:",
        f"  - Reference condition: {PROJECTION_PARAMS['reference']}",
        f"  - Rank P: {PROJECTION_PARAMS['n_comps']}",
        "\nDifferential expression:",
        f"  - FDR < {DE_PARAMS['fdr_threshold']}, |log2FC| > {DE_PARAMS['fc_threshold']}",
    ]

    if METABOLOMICS_PARAMS["rt_end"] is not None:
        summary.append(
            f"\nRT window: {METABOLOMICS_PARAMS['rt_start']} - {METABOLOMICS_PARAMS['rt_end']} min"
        )

    return "\n".join(summary)


def validate_params():
    """Validate that parameter values make sense"""
    errors = []

    for name in ("n_top_genes", "n_pcs", "n_neighbors"):
        if PREPROCESS_PARAMS[name] < 1:
            errors.append(f"{name} must be positive")

    if PROJECTION_PARAMS["n_comps"] < 1:
        errors.append("n_comps must be positive")

    if MIXING_PARAMS["n_neighbors"] < 1:
        errors.append("mixing n_neighbors must be positive")

    if not 0 < DE_PARAMS["fdr_threshold"] < 1:
        errors.append("fdr_threshold must be between 0 and 1")

    if not 0 < NEIGHBORHOOD_PARAMS["fdr_threshold"] < 1:
        errors.append("neighborhood fdr_threshold must be between 0 and 1")

    if not 0 < NEIGHBORHOOD_PARAMS["sample_fraction"] <= 1:
        errors.append("sample_fraction must be in (0, 1]")

    rt_end = METABOLOMICS_PARAMS["rt_end"]
    if rt_end is not None and METABOLOMICS_PARAMS["rt_start"] >= rt_end:
        errors.append("rt_start must be less than rt_end")

    if METABOLOMICS_PARAMS["rt_tolerance"] <= 0:
        errors.append("rt_tolerance must be positive")

    if errors:
        raise ValueError("Parameter validation failed:\n" + "\n".join(errors))

    return True


# Run validation on import
validate_params()
