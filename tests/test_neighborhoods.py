"""Tests for neighborhood differential abundance."""

import anndata
import numpy as np
import pandas as pd
import pytest

from condition_integration.neighborhoods import (
    annotate_neighborhoods,
    neighborhood_abundance,
    sample_neighborhoods,
)


@pytest.fixture
def enriched():
    """Two clusters: the first is 90% stim, the second 10% stim."""
    rng = np.random.default_rng(4)
    emb = np.vstack([rng.normal(0, 0.5, size=(100, 2)), rng.normal(20, 0.5, size=(100, 2))])
    labels = np.array(["stim"] * 90 + ["ctrl"] * 10 + ["stim"] * 10 + ["ctrl"] * 90)
    cluster = np.array(["A"] * 100 + ["B"] * 100)
    return emb, labels, cluster


class TestSampleNeighborhoods:
    def test_centers_lead_each_row(self, enriched):
        emb, _, _ = enriched
        centers, members = sample_neighborhoods(emb, sample_fraction=0.1, n_neighbors=15, seed=0)

        assert len(centers) == 20
        assert members.shape == (20, 16)
        np.testing.assert_array_equal(members[:, 0], centers)
        assert np.all(np.diff(centers) > 0)

    def test_at_least_one_center(self, enriched):
        emb, _, _ = enriched
        centers, _ = sample_neighborhoods(emb, sample_fraction=0.001, n_neighbors=5)
        assert len(centers) == 1


class TestNeighborhoodAbundance:
    def test_direction_follows_enrichment(self, enriched):
        emb, labels, cluster = enriched
        results = neighborhood_abundance(emb, labels, "stim", sample_fraction=0.25, n_neighbors=30)

        in_a = cluster[results["center"].to_numpy()] == "A"
        assert (results.loc[in_a, "log2FC"] > 0).all()
        assert (results.loc[~in_a, "log2FC"] < 0).all()
        assert results["significant"].mean() > 0.9
        assert (results["n_test"] + results["n_other"] == results["size"]).all()

    def test_obs_names_and_annotation(self, enriched):
        emb, labels, cluster = enriched
        obs_names = pd.Index([f"cell{i}" for i in range(len(labels))])
        adata = anndata.AnnData(
            X=np.zeros((len(labels), 1)),
            obs=pd.DataFrame({"cell_type": cluster}, index=obs_names),
        )

        results = neighborhood_abundance(emb, labels, "stim", obs_names=obs_names, n_neighbors=10)
        results = annotate_neighborhoods(results, adata)

        assert results["center"].str.startswith("cell").all()
        assert set(results["cell_type"]) <= {"A", "B"}

    def test_annotation_without_obs_names(self, enriched):
        emb, labels, cluster = enriched
        adata = anndata.AnnData(
            X=np.zeros((len(labels), 1)),
            obs=pd.DataFrame(
                {"cell_type": cluster}, index=[f"cell{i}" for i in range(len(labels))]
            ),
        )

        results = annotate_neighborhoods(neighborhood_abundance(emb, labels, "stim", n_neighbors=10), adata)

        np.testing.assert_array_equal(results["center"], results["center_idx"])
        np.testing.assert_array_equal(results["cell_type"], cluster[results["center_idx"].to_numpy()])

    def test_unknown_condition(self, enriched):
        emb, labels, _ = enriched
        with pytest.raises(ValueError):
            neighborhood_abundance(emb, labels, "absent")

    def test_single_condition(self, enriched):
        emb, labels, _ = enriched
        with pytest.raises(ValueError):
            neighborhood_abundance(emb, np.full(len(labels), "stim"), "stim")
