#!/usr/bin/env python3
"""
Build Colab notebooks from the percent-format lab scripts.

Every `integration_colab/*.py` file is split at `# %%` markers into
markdown and code cells and written next to it as an `.ipynb`.

Usage:
    python build_all_notebooks.py [--source-dir integration_colab]
"""

import argparse
import json
from pathlib import Path

SOURCE_DIR = Path("integration_colab")


def create_cell(cell_type, source, metadata=None):
    """Create a notebook cell"""
    cell = {
        "cell_type": cell_type,
        "metadata": metadata or {},
        "source": source if isinstance(source, list) else [source]
    }
    if cell_type == "code":
        cell["execution_count"] = None
        cell["outputs"] = []
    return cell


def create_notebook_metadata():
    """Standard notebook metadata"""
    return {
        "colab": {"provenance": []},
        "kernelspec": {
            "display_name": "Python 3",
            "language": "python",
            "name": "python3"
        },
        "language_info": {
            "codemirror_mode": {"name": "ipython", "version": 3},
            "file_extension": ".py",
            "mimetype": "text/x-python",
            "name": "python",
            "version": "3.10.0"
        }
    }


def _to_source(lines):
    # Drop blank lines around the cell, keep newlines between lines
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return [line + "\n" for line in lines[:-1]] + lines[-1:]


def parse_percent_script(text):
    """Split a percent-format script into notebook cells

    `# %% [markdown]` starts a markdown cell whose lines have the leading
    "# " removed; any other `# %%` line starts a code cell. Text before the
    first marker becomes a code cell.
    """
    cells = []
    cell_type, lines = "code", []

    def flush():
        source = _to_source(list(lines))
        if source:
            cells.append(create_cell(cell_type, source))

    for line in text.splitlines():
        if line.startswith("# %%"):
            flush()
            cell_type = "markdown" if "[markdown]" in line else "code"
            lines = []
            continue

        if cell_type == "markdown":
            if line.startswith("# "):
                line = line[2:]
            elif line.strip() == "#":
                line = ""
        lines.append(line)

    flush()
    return cells


def build_notebook(script_path, output_dir=None):
    """Convert one percent-format script into an .ipynb file

    Returns:
        Path of the written notebook
    """
    script_path = Path(script_path)
    output_dir = Path(output_dir) if output_dir else script_path.parent
    output_dir.mkdir(parents=True, exist_ok=True)

    notebook = {
        "cells": parse_percent_script(script_path.read_text()),
        "metadata": create_notebook_metadata(),
        "nbformat": 4,
        "nbformat_minor": 0
    }

    output_file = output_dir / f"{script_path.stem}.ipynb"
    with open(output_file, "w") as f:
        json.dump(notebook, f, indent=1)

    print(f"✓ Created {output_file.name} ({len(notebook['cells'])} cells)")
    return output_file


def main(source_dir=SOURCE_DIR, output_dir=None):
    print("=" * 70)
    print("BUILDING LAB NOTEBOOKS")
    print("=" * 70)

    scripts = sorted(Path(source_dir).glob("*.py"))
    if not scripts:
        raise FileNotFoundError(f"No lab scripts found in {source_dir}")

    built = [build_notebook(script, output_dir) for script in scripts]

    print("\n" + "=" * 70)
    print(f"Built {len(built)} notebooks in {output_dir or source_dir}/")
    print("=" * 70)
    return built


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Build lab notebooks from percent scripts")
    parser.add_argument("--source-dir", default=str(SOURCE_DIR))
    parser.add_argument("--output-dir", default=None)
    args = parser.parse_args()

    main(args.source_dir, args.output_dir)
