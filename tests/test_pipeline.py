"""Tests for the command-line integration walkthrough."""

import pytest

from integration_pipeline import check_conditions, main


def test_check_conditions(sim_adata):
    assert check_conditions(sim_adata, "condition", "ctrl") == ["stim"]


def test_missing_reference(sim_adata):
    with pytest.raises(ValueError, match="'treated' not found"):
        check_conditions(sim_adata, "condition", "treated")


def test_single_condition(sim_adata):
    sim_adata.obs["condition"] = "ctrl"
    with pytest.raises(ValueError, match="Only one condition"):
        check_conditions(sim_adata, "condition", "ctrl")


def test_main_rejects_unknown_reference_before_processing(sim_adata, tmp_path):
    path = tmp_path / "sim.h5ad"
    sim_adata.write_h5ad(path)

    with pytest.raises(ValueError, match="not found"):
        main(
            input_path=path,
            reference="treated",
            plots_dir_path=tmp_path / "plots",
            output_path=tmp_path / "out.h5ad",
        )
    assert not (tmp_path / "out.h5ad").exists()
