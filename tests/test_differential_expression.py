"""Tests for pseudobulk and cell-level differential expression."""

import numpy as np
import pandas as pd
import pytest
import scanpy as sc

from condition_integration.differential_expression import (
    RESULT_COLUMNS,
    create_pseudobulk,
    filter_genes_for_de,
    run_de_for_celltype,
    run_de_with_deseq2,
    run_de_with_wilcoxon,
)
from condition_integration.params import DE_PARAMS


@pytest.fixture
def lognorm_adata(sim_adata):
    sc.pp.normalize_total(sim_adata, target_sum=1e4)
    sc.pp.log1p(sim_adata)
    sim_adata.layers["lognorm"] = sim_adata.X.copy()
    return sim_adata


class TestPseudobulk:
    def test_counts_are_summed(self, sim_adata):
        pb_df, info = create_pseudobulk(sim_adata, min_cells=1)

        assert pb_df.shape[0] == sim_adata.n_vars
        assert pb_df.shape[1] == len(info)
        np.testing.assert_allclose(pb_df.to_numpy().sum(), sim_adata.layers["counts"].sum(), rtol=1e-6)
        assert info["n_cells"].sum() == sim_adata.n_obs

        first = info.iloc[0]
        mask = (
            (sim_adata.obs["sample"].astype(str) == first["sample_id"])
            & (sim_adata.obs["cell_type"].astype(str) == first["celltype"])
        ).to_numpy()
        np.testing.assert_allclose(
            pb_df[first["group_id"]].to_numpy(), sim_adata.layers["counts"][mask].sum(axis=0), rtol=1e-6
        )

    def test_min_cells_drops_small_groups(self, sim_adata):
        _, info_all = create_pseudobulk(sim_adata, min_cells=1)
        threshold = int(info_all["n_cells"].median()) + 1
        _, info = create_pseudobulk(sim_adata, min_cells=threshold)
        assert (info["n_cells"] >= threshold).all()
        assert len(info) < len(info_all)

    def test_no_groups_pass(self, sim_adata):
        pb_df, info = create_pseudobulk(sim_adata, min_cells=10_000)
        assert pb_df.shape == (sim_adata.n_vars, 0)
        assert info.empty

    def test_filter_genes(self):
        pb_df = pd.DataFrame({"s1": [0, 10, 6], "s2": [1, 10, 0]}, index=["g1", "g2", "g3"])
        kept = filter_genes_for_de(pb_df, min_count=5, min_samples=2)
        assert list(kept.index) == ["g2"]


class TestWilcoxon:
    def test_response_genes_upregulated(self, lognorm_adata):
        results = run_de_with_wilcoxon(lognorm_adata, "condition", "stim", "ctrl")

        assert list(results.columns) == RESULT_COLUMNS
        assert results["contrast"].iloc[0] == "stim_vs_ctrl"

        response = lognorm_adata.var["response_gene"].to_numpy()
        assert results.loc[response, "upregulated"].mean() > 0.9
        assert results.loc[~response, "significant"].mean() < 0.3

    def test_missing_group(self, lognorm_adata):
        assert run_de_with_wilcoxon(lognorm_adata, "condition", "stim", "absent") is None


class TestDeseq2:
    def test_too_few_samples_skipped(self, sim_adata):
        pb_df, info = create_pseudobulk(sim_adata)
        info = info.groupby("condition").head(1)
        assert run_de_with_deseq2(pb_df, info, "stim_vs_ctrl", "stim", "ctrl") is None

    def test_celltype_contrast(self, sim_adata):
        pb_df, info = create_pseudobulk(sim_adata)
        params = dict(DE_PARAMS, min_genes=10)

        results = run_de_for_celltype(
            pb_df, info, "Type0", [("stim_vs_ctrl", "stim", "ctrl")], params
        )

        assert list(results.columns) == RESULT_COLUMNS
        assert (results["cell_type"] == "Type0").all()
        response = results["gene"].isin(sim_adata.var_names[sim_adata.var["response_gene"]])
        assert results.loc[response, "logFC"].mean() > 1.0
        assert results.loc[response, "upregulated"].mean() > 0.5

    def test_unknown_celltype_skipped(self, sim_adata):
        pb_df, info = create_pseudobulk(sim_adata)
        assert run_de_for_celltype(pb_df, info, "Nope", [("c", "stim", "ctrl")]) is None
