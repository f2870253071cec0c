#!/usr/bin/env python3
"""
Plotting helpers for the integration labs
"""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns


def vectors_to_long(vectors, names=None, value_name="value", group_name="group"):
    """Reshape a list of vectors into a long-format table for seaborn

    Args:
        vectors: List of 1D arrays, or dict of name -> 1D array. Vectors may
            have different lengths.
        names: Group names for a list input (defaults to "0", "1", ...)
        value_name: Name of the value column
        group_name: Name of the group column

    Returns:
        DataFrame with columns [group_name, "index", value_name], one row per
        element, groups and elements in input order
    """
    if isinstance(vectors, dict):
        if names is not None:
            raise ValueError("names cannot be given together with a dict of vectors")
        names, vectors = list(vectors.keys()), list(vectors.values())
    elif names is None:
        names = [str(i) for i in range(len(vectors))]

    if len(names) != len(vectors):
        raise ValueError(f"Got {len(names)} names for {len(vectors)} vectors")

    frames = []
    for name, vec in zip(names, vectors):
        vec = np.ravel(np.asarray(vec))
        frames.append(
            pd.DataFrame({group_name: name, "index": np.arange(vec.size), value_name: vec})
        )

    if not frames:
        return pd.DataFrame(columns=[group_name, "index", value_name])

    long_df = pd.concat(frames, ignore_index=True)
    long_df[group_name] = pd.Categorical(long_df[group_name], categories=list(dict.fromkeys(names)))
    return long_df


def plot_group_distributions(long_df, value_name="value", group_name="group", title=None, save_path=None):
    """Violin plot of a long-format table from `vectors_to_long`"""
    fig, ax = plt.subplots(figsize=(max(6, 1.2 * long_df[group_name].nunique()), 5))
    sns.violinplot(data=long_df, x=group_name, y=value_name, cut=0, ax=ax)
    ax.set_title(title or value_name)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_path}")
        plt.close(fig)
    return fig


def plot_projection(result, dims=(0, 1), obs_names=None, title=None, save_path=None):
    """Scatter two projected dimensions colored by condition

    Args:
        result: ProjectionResult from `project_conditions`
        dims: Pair of zero-based component indices
        obs_names: Optional cell names
        title: Plot title
        save_path: Path to save figure (figure is closed after saving)
    """
    df = result.to_frame(obs_names)
    x, y = (f"proj_{d + 1}" for d in dims)

    fig, ax = plt.subplots(figsize=(7, 6))
    sns.scatterplot(data=df, x=x, y=y, hue="condition", s=12, alpha=0.7, linewidth=0, ax=ax)
    ax.set_title(title or f"Projection onto '{result.reference}' subspace")
    ax.set_xlabel(f"{x} ({result.explained_variance_ratio[dims[0]] * 100:.1f}% of reference)")
    ax.set_ylabel(f"{y} ({result.explained_variance_ratio[dims[1]] * 100:.1f}% of reference)")
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_path}")
        plt.close(fig)
    return fig


def plot_mixing_comparison(summary_df, metric="relative_mixing", save_path=None):
    """Bar plot of a `mixing_summary` table"""
    fig, ax = plt.subplots(figsize=(8, 4))
    sns.barplot(data=summary_df, x=metric, y="embedding", color="#1f77b4", ax=ax)
    if metric == "relative_mixing":
        ax.axvline(1.0, color="gray", linestyle="--", linewidth=1)
    ax.set_xlabel(metric.replace("_", " "))
    ax.set_ylabel("")
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_path}")
        plt.close(fig)
    return fig
