#!/usr/bin/env python3
"""
Multi-condition single-cell RNA-seq integration walkthrough
Script version of the integration lab notebook

This script performs:
1. Data loading (h5ad file, or a simulated ctrl/stim dataset)
2. Normalization, HVG selection, pooled PCA/UMAP/clustering
3. Manual reference-subspace projection, once per reference condition
4. Harmony integration and nearest-neighbor mixing comparison
5. Neighborhood differential abundance and pseudobulk DE

uv run python integration_pipeline.py --input data/kang.h5ad --reference ctrl
"""

import warnings
import argparse
import matplotlib
import pandas as pd
import scanpy as sc
from pathlib import Path

from condition_integration.data_loader import load_h5ad_dataset, simulate_condition_dataset
from condition_integration.processing import (
    normalize_and_log,
    select_hvgs,
    run_pca_umap_clustering,
    umap_from_representation,
    plot_embeddings,
)
from condition_integration.integration import compare_integrations
from condition_integration.neighborhoods import neighborhood_abundance
from condition_integration.differential_expression import create_pseudobulk, run_de_for_celltype
from condition_integration.plotting import plot_mixing_comparison
from condition_integration.params import (
    DE_PARAMS,
    PREPROCESS_PARAMS,
    PROJECTION_PARAMS,
    get_param_summary,
)

# Configure scanpy
sc.settings.verbosity = 1
sc.settings.set_figure_params(dpi=80, facecolor="white")

warnings.filterwarnings("ignore", category=FutureWarning)


def check_conditions(adata, condition_key, reference):
    """Return the non-reference conditions, failing early on unusable labels

    Raises:
        ValueError: If the reference is absent or no other condition exists
    """
    present = list(adata.obs[condition_key].astype(str).unique())
    if str(reference) not in present:
        raise ValueError(
            f"Reference condition {reference!r} not found in '{condition_key}' (found: {', '.join(present)})"
        )
    others = [c for c in present if c != str(reference)]
    if not others:
        raise ValueError(f"Only one condition ({reference!r}) present - nothing to integrate")
    return others


def main(
    input_path=None,
    condition_key=PROJECTION_PARAMS["condition_key"],
    reference=PROJECTION_PARAMS["reference"],
    sample_key="sample",
    celltype_key="cell_type",
    n_comps=PROJECTION_PARAMS["n_comps"],
    use_harmony=True,
    plots_dir_path="plots",
    output_path="integrated_data.h5ad",
):
    """Main integration walkthrough

    Args:
        input_path: h5ad with raw counts; None runs on simulated data
        condition_key: obs column with condition labels
        reference: Condition used as projection reference for the saved UMAP
        sample_key: obs column with replicate ids (pseudobulk DE)
        celltype_key: obs column with cell type labels (pseudobulk DE)
        n_comps: Rank of the projection
        use_harmony: Include Harmony in the comparison
        plots_dir_path: Directory where plots will be saved
        output_path: Where to write the processed h5ad

    Returns:
        Tuple of (AnnData, mixing summary DataFrame, DE results or None)
    """
    print("Starting multi-condition integration walkthrough...")

    plots_dir = Path(plots_dir_path)
    plots_dir.mkdir(parents=True, exist_ok=True)
    matplotlib.use("Agg")
    print(f"Plots will be saved to: {plots_dir.absolute()}")

    print("\n" + get_param_summary() + "\n")

    # Step 1: Load data
    if input_path:
        adata = load_h5ad_dataset(input_path, condition_key=condition_key)
    else:
        print("No input given - simulating a ctrl/stim dataset")
        adata = simulate_condition_dataset(conditions=(reference, "stim"))
    conditions = check_conditions(adata, condition_key, reference)

    # Step 2: Normalize, HVGs, pooled embedding
    adata = normalize_and_log(adata)
    adata = select_hvgs(adata, n_top_genes=PREPROCESS_PARAMS["n_top_genes"])
    adata = run_pca_umap_clustering(adata, save_dir=plots_dir)
    plot_embeddings(adata, color_keys=(condition_key, celltype_key, "leiden"), save_dir=plots_dir)

    # Step 3-4: Projection (each reference) + Harmony, scored by mixing
    summary = compare_integrations(
        adata,
        condition_key=condition_key,
        n_comps=min(n_comps, adata.obsm["X_pca"].shape[1]),
        use_harmony=use_harmony,
    )
    print("\nCondition mixing:")
    print(summary.to_string(index=False))
    summary.to_csv(plots_dir / "mixing_summary.csv", index=False)
    plot_mixing_comparison(summary, save_path=plots_dir / "mixing_comparison.png")

    proj_key = f"X_proj_{reference}"
    umap_key = umap_from_representation(adata, proj_key)
    plot_embeddings(
        adata, color_keys=(condition_key, celltype_key), basis=umap_key.removeprefix("X_"),
        save_dir=plots_dir,
    )

    # Step 5: Neighborhood abundance on the projected embedding
    da_results = neighborhood_abundance(
        adata.obsm[proj_key], adata.obs[condition_key], conditions[0], obs_names=adata.obs_names
    )
    da_results.to_csv(plots_dir / "neighborhood_abundance.csv", index=False)

    # Step 6: Pseudobulk DE per cell type
    de_results = None
    if sample_key in adata.obs and celltype_key in adata.obs:
        pb_df, sample_info_df = create_pseudobulk(
            adata, sample_key=sample_key, celltype_key=celltype_key, condition_key=condition_key
        )
        contrasts = [(f"{cond}_vs_{reference}", cond, reference) for cond in conditions]
        all_results = [
            run_de_for_celltype(pb_df, sample_info_df, ct, contrasts, DE_PARAMS)
            for ct in sample_info_df["celltype"].unique()
        ]
        all_results = [res for res in all_results if res is not None]
        if all_results:
            de_results = pd.concat(all_results, ignore_index=True)
            de_results.to_csv(plots_dir / "pseudobulk_de.csv", index=False)

    adata.write(output_path)
    print(f"Saved integrated data to {output_path}")

    print("Analysis complete!")
    return adata, summary, de_results


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Multi-condition scRNA-seq integration walkthrough"
    )
    parser.add_argument("--input", default=None, help="h5ad file with raw counts (default: simulated data)")
    parser.add_argument("--condition-key", default=PROJECTION_PARAMS["condition_key"])
    parser.add_argument("--reference", default=PROJECTION_PARAMS["reference"])
    parser.add_argument("--n-comps", type=int, default=PROJECTION_PARAMS["n_comps"])
    parser.add_argument("--no-harmony", action="store_true", help="Skip Harmony")
    parser.add_argument(
        "--plots-dir",
        default="plots",
        help="Directory to write plots to (default: 'plots')",
    )
    parser.add_argument("--output", default="integrated_data.h5ad")
    args = parser.parse_args()

    main(
        input_path=args.input,
        condition_key=args.condition_key,
        reference=args.reference,
        n_comps=args.n_comps,
        use_harmony=not args.no_harmony,
        plots_dir_path=args.plots_dir,
        output_path=args.output,
    )
