#!/usr/bin/env python3
"""
LC chromatogram preprocessing utilities for the metabolomics lab

Works on exported chromatogram tables: one retention-time column plus one
intensity column per sample. Covers loading, RT trimming, peak picking,
grouping peaks across samples into a feature table, normalization,
scaling and PCA.
"""

import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.signal import find_peaks
from sklearn.decomposition import PCA

from condition_integration.params import METABOLOMICS_PARAMS

RT_COLUMN = METABOLOMICS_PARAMS["rt_column"]


def _sample_columns(df, rt_column):
    return [col for col in df.columns if col != rt_column]


def read_chromatogram_csvs(data_folder, rt_column=RT_COLUMN, output_csv=None):
    """Combine per-sample chromatogram CSVs on a common RT axis

    Each CSV's first column is taken as retention time and its second column
    as that sample's intensity; the sample is named after the file. Gaps
    left by differing RT grids are linearly interpolated.

    Args:
        data_folder: Folder containing the CSV files
        rt_column: Name of the RT column in the combined table
        output_csv: Optional path to save the combined table

    Returns:
        Combined DataFrame (RT + one column per sample)
    """
    csv_files = sorted(f for f in os.listdir(data_folder) if f.lower().endswith(".csv"))
    if not csv_files:
        raise ValueError(f"No CSV files found in {data_folder}")

    combined_df = None
    for file in csv_files:
        df = pd.read_csv(os.path.join(data_folder, file))
        if df.shape[1] < 2:
            print(f"File {file} has less than 2 columns. Skipping.")
            continue

        df = df.iloc[:, :2]
        df.columns = [rt_column, os.path.splitext(file)[0]]

        if combined_df is None:
            combined_df = df
        else:
            combined_df = pd.merge(combined_df, df, on=rt_column, how="outer")

    if combined_df is None:
        raise ValueError(f"No usable chromatograms in {data_folder}")

    combined_df = combined_df.sort_values(by=rt_column).reset_index(drop=True)
    samples = _sample_columns(combined_df, rt_column)
    combined_df[samples] = (
        combined_df.set_index(rt_column)[samples]
        .interpolate(method="index", limit_area="inside")
        .fillna(0)
        .to_numpy()
    )
    print(f"Combined {len(samples)} chromatograms over {len(combined_df):,} RT points")

    if output_csv:
        combined_df.to_csv(output_csv, index=False)
        print(f"  Saved: {output_csv}")

    return combined_df


def filter_rt_range(data, start_rt=None, end_rt=None, rt_column=RT_COLUMN):
    """Keep rows with start_rt <= RT <= end_rt (None = open bound)"""
    mask = pd.Series(True, index=data.index)
    if start_rt is not None:
        mask &= data[rt_column] >= start_rt
    if end_rt is not None:
        mask &= data[rt_column] <= end_rt
    return data.loc[mask].reset_index(drop=True)


def detect_peaks(
    data,
    rt_column=RT_COLUMN,
    height=METABOLOMICS_PARAMS["peak_height"],
    distance=METABOLOMICS_PARAMS["peak_distance"],
    prominence=METABOLOMICS_PARAMS["peak_prominence"],
):
    """Detect peaks in every sample chromatogram

    `height` and `prominence` are fractions of each sample's maximum
    intensity, so samples with different overall signal are treated alike.

    Returns:
        Long DataFrame with columns sample, rt, intensity, prominence
    """
    rt_values = data[rt_column].to_numpy()

    rows = []
    for sample in _sample_columns(data, rt_column):
        intensity = data[sample].to_numpy(dtype=float)
        max_intensity = intensity.max()
        if max_intensity <= 0:
            print(f"  ⚠️  {sample}: flat chromatogram, no peaks")
            continue

        peaks, props = find_peaks(
            intensity,
            height=height * max_intensity,
            distance=distance,
            prominence=prominence * max_intensity,
        )
        for idx, prom in zip(peaks, props["prominences"]):
            rows.append(
                {"sample": sample, "rt": rt_values[idx], "intensity": intensity[idx], "prominence": prom}
            )

    peaks_df = pd.DataFrame(rows, columns=["sample", "rt", "intensity", "prominence"])
    counts = peaks_df["sample"].value_counts()
    print(f"Detected {len(peaks_df):,} peaks (median {counts.median() if len(counts) else 0:.0f} per sample)")
    return peaks_df


def build_feature_table(peaks_df, samples=None, rt_tolerance=METABOLOMICS_PARAMS["rt_tolerance"]):
    """Group peaks across samples into features

    Peaks sorted by RT are chained into one feature while consecutive peaks
    lie within `rt_tolerance`. Within a feature each sample contributes its
    most intense peak; samples without a peak get 0.

    Args:
        peaks_df: Output of `detect_peaks`
        samples: Sample order for the columns (defaults to order of appearance)
        rt_tolerance: Maximum RT gap (minutes) within a feature

    Returns:
        features x samples DataFrame indexed by feature id, plus an `rt`
        column with the feature's median RT
    """
    if peaks_df.empty:
        raise ValueError("No peaks to group - check the peak detection thresholds")
    if samples is None:
        samples = list(dict.fromkeys(peaks_df["sample"]))

    peaks = peaks_df.sort_values("rt").reset_index(drop=True)
    new_feature = peaks["rt"].diff().fillna(np.inf) > rt_tolerance
    peaks["feature"] = new_feature.cumsum() - 1

    table = peaks.pivot_table(
        index="feature", columns="sample", values="intensity", aggfunc="max", fill_value=0
    ).reindex(columns=samples, fill_value=0)
    table.columns.name = None

    feature_rt = peaks.groupby("feature")["rt"].median()
    table.insert(0, "rt", feature_rt)
    table.index = [f"FT{i + 1:04d}_RT{rt:.2f}" for i, rt in enumerate(feature_rt)]

    print(f"Built feature table: {table.shape[0]:,} features × {len(samples)} samples")
    return table


def pqn_normalize(table, reference=None, exclude_columns=("rt",)):
    """Probabilistic quotient normalization of a features x samples table

    Each sample is divided by the median of its quotients to the reference
    spectrum (default: the feature-wise median). Features missing from the
    reference are ignored when computing the quotients.
    """
    table = table.copy()
    cols = [col for col in table.columns if col not in exclude_columns]
    numeric = table[cols].astype(float)

    if reference is None:
        reference = numeric.median(axis=1)

    quotients = numeric.divide(reference.where(reference > 0), axis=0)
    quotients = quotients.where(quotients > 0)
    median_quotients = quotients.median(axis=0)

    if median_quotients.isna().any() or (median_quotients <= 0).any():
        bad = median_quotients.index[median_quotients.isna() | (median_quotients <= 0)]
        raise ValueError(f"Cannot PQN-normalize samples without shared features: {list(bad)}")

    table[cols] = numeric.divide(median_quotients, axis=1)
    return table


def log_transform(table, constant=1, exclude_columns=("rt",)):
    """log10(x + constant) of the sample columns"""
    table = table.copy()
    cols = [col for col in table.columns if col not in exclude_columns]
    table[cols] = np.log10(table[cols].astype(float) + constant)
    return table


def pareto_scale(table, exclude_columns=("rt",)):
    """Center each feature across samples and divide by sqrt of its std"""
    table = table.copy()
    cols = [col for col in table.columns if col not in exclude_columns]
    values = table[cols].astype(float)

    centered = values.sub(values.mean(axis=1), axis=0)
    std = values.std(axis=1)
    table[cols] = centered.div(np.sqrt(std.where(std != 0, 1.0)), axis=0)
    return table


def run_feature_pca(table, n_components=2, exclude_columns=("rt",)):
    """PCA of samples described by their features

    Returns:
        Tuple of (fitted PCA, samples x PCs scores DataFrame, explained variance %)
    """
    cols = [col for col in table.columns if col not in exclude_columns]
    X = table[cols].T.astype(float)

    n_components = min(n_components, min(X.shape))
    pca_model = PCA(n_components=n_components)
    scores = pca_model.fit_transform(X)

    comp_labels = [f"PC{i + 1}" for i in range(n_components)]
    scores_df = pd.DataFrame(scores, columns=comp_labels, index=X.index)

    return pca_model, scores_df, pca_model.explained_variance_ratio_ * 100


def plot_chromatograms(data, peaks_df=None, rt_column=RT_COLUMN, stacked=False, save_path=None):
    """Overlay (or stack) sample chromatograms, optionally marking peaks

    Args:
        data: Combined chromatogram table
        peaks_df: Optional output of `detect_peaks`
        rt_column: RT column name
        stacked: Offset each trace vertically
        save_path: Path to save figure (figure is closed after saving)
    """
    samples = _sample_columns(data, rt_column)
    offset_step = data[samples].to_numpy().max() * 0.5 if stacked else 0

    fig, ax = plt.subplots(figsize=(12, 6))
    for i, sample in enumerate(samples):
        offset = i * offset_step
        ax.plot(data[rt_column], data[sample] + offset, linewidth=0.8, label=sample)
        if peaks_df is not None:
            sp = peaks_df[peaks_df["sample"] == sample]
            ax.scatter(sp["rt"], sp["intensity"] + offset, s=15, facecolors="none", edgecolors="red")

    ax.set_xlabel(rt_column)
    ax.set_ylabel("Intensity")
    ax.set_title("Chromatograms")
    if len(samples) <= 20:
        ax.legend(fontsize=8, loc="upper right")
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_path}")
        plt.close(fig)
    return fig


def simulate_chromatograms(n_samples=6, n_peaks=12, rt_max=20.0, n_points=2000, rt_jitter=0.01, seed=0):
    """Simulate a set of chromatograms with shared Gaussian peaks

    Half of the samples (group "B") have the first third of the peaks
    doubled, giving the lab a real group difference to find.

    Returns:
        Tuple of (chromatogram table, sample metadata DataFrame)
    """
    rng = np.random.default_rng(seed)
    rt = np.linspace(0, rt_max, n_points)
    centers = np.sort(rng.uniform(1.0, rt_max - 1.0, size=n_peaks))
    heights = rng.uniform(0.2, 1.0, size=n_peaks) * 1e5
    widths = rng.uniform(0.03, 0.08, size=n_peaks)

    data = {RT_COLUMN: rt}
    groups = []
    for s in range(n_samples):
        group = "A" if s < n_samples // 2 else "B"
        scale = np.ones(n_peaks)
        if group == "B":
            scale[: n_peaks // 3] = 2.0
        signal = np.zeros_like(rt)
        for c, h, w, k in zip(centers, heights, widths, scale):
            c = c + rng.normal(0, rt_jitter)
            signal += k * h * np.exp(-0.5 * ((rt - c) / w) ** 2)
        signal *= rng.lognormal(0, 0.1)
        signal += rng.normal(0, 200, size=n_points).clip(min=0)
        data[f"S{s + 1:02d}"] = signal
        groups.append(group)

    metadata = pd.DataFrame({"sample": [f"S{s + 1:02d}" for s in range(n_samples)], "group": groups})
    return pd.DataFrame(data), metadata
