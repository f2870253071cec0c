"""Tests for building lab notebooks from percent-format scripts."""

import json
from pathlib import Path

import pytest

from build_all_notebooks import build_notebook, main, parse_percent_script

LAB_DIR = Path(__file__).resolve().parent.parent / "integration_colab"

SCRIPT = """# %% [markdown]
# # Title
#
# Some text

# %%
import numpy as np
x = np.arange(3)

# %%
print(x)
"""


def test_parse_cells():
    cells = parse_percent_script(SCRIPT)

    assert [c["cell_type"] for c in cells] == ["markdown", "code", "code"]
    assert cells[0]["source"] == ["# Title\n", "\n", "Some text"]
    assert cells[1]["source"] == ["import numpy as np\n", "x = np.arange(3)"]
    assert cells[1]["outputs"] == [] and cells[1]["execution_count"] is None
    assert "outputs" not in cells[0]


def test_preamble_becomes_code_cell():
    cells = parse_percent_script("import os\n\n# %% [markdown]\n# Hi\n")
    assert [c["cell_type"] for c in cells] == ["code", "markdown"]


def test_build_notebook(tmp_path):
    script = tmp_path / "lab.py"
    script.write_text(SCRIPT)

    output = build_notebook(script, tmp_path / "out")

    nb = json.loads(output.read_text())
    assert output.name == "lab.ipynb"
    assert nb["nbformat"] == 4
    assert nb["metadata"]["kernelspec"]["name"] == "python3"
    assert len(nb["cells"]) == 3


def test_build_all_labs(tmp_path):
    built = main(LAB_DIR, tmp_path)

    assert [p.name for p in built] == [
        "1_metabolomics_preprocessing.ipynb",
        "2_condition_integration.ipynb",
        "3_differential_expression.ipynb",
    ]
    for path in built:
        nb = json.loads(path.read_text())
        assert nb["cells"][0]["cell_type"] == "markdown"


def test_missing_source_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        main(tmp_path / "nothing")
