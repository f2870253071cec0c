"""Tests for the centralized analysis parameters."""

import pytest

from condition_integration import params


def test_defaults_are_valid():
    assert params.validate_params() is True


def test_summary_mentions_reference():
    summary = params.get_param_summary()
    assert params.PROJECTION_PARAMS["reference"] in summary
    assert "Rank P" in summary


@pytest.mark.parametrize(
    "table, key, value, message",
    [
        ("PROJECTION_PARAMS", "n_comps", 0, "n_comps"),
        ("DE_PARAMS", "fdr_threshold", 1.5, "fdr_threshold"),
        ("NEIGHBORHOOD_PARAMS", "sample_fraction", 0, "sample_fraction"),
        ("METABOLOMICS_PARAMS", "rt_end", 0.1, "rt_start"),
    ],
)
def test_invalid_values_rejected(monkeypatch, table, key, value, message):
    monkeypatch.setitem(getattr(params, table), key, value)
    with pytest.raises(ValueError, match=message):
        params.validate_params()


def test_all_errors_reported(monkeypatch):
    monkeypatch.setitem(params.PREPROCESS_PARAMS, "n_pcs", 0)
    monkeypatch.setitem(params.MIXING_PARAMS, "n_neighbors", 0)
    with pytest.raises(ValueError) as excinfo:
        params.validate_params()
    assert "n_pcs" in str(excinfo.value)
    assert "mixing n_neighbors" in str(excinfo.value)
