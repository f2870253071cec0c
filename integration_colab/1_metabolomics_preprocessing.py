# %% [markdown]
# # Lab 1: Untargeted Metabolomics Preprocessing
#
# **Integration Labs - Part 1 of 3**
#
# **📥 Input:** One chromatogram CSV per sample (RT, intensity)
# **📤 Output:** `outputs/feature_table.csv`
# **➡️ Next:** `2_condition_integration.ipynb`
#
# ---
#
# Before any statistics, raw chromatograms have to become a **feature table**:
# one row per compound-like signal, one column per sample. In this lab you will
#
# 1. Combine per-sample chromatograms on a common retention-time (RT) axis
# 2. Trim the injection front and column wash
# 3. Pick peaks in every sample
# 4. Group peaks across samples into features
# 5. Normalize (PQN), transform and scale
# 6. Look at the samples in PCA space
#
# If you do not have your own data, the lab simulates six samples from two groups.

# %% [markdown]
# ## 1. Setup

# %%
# !pip install -q numpy pandas scipy scikit-learn matplotlib seaborn

import matplotlib.pyplot as plt
import seaborn as sns
from pathlib import Path

from condition_integration.metabolomics import (
    read_chromatogram_csvs,
    simulate_chromatograms,
    filter_rt_range,
    detect_peaks,
    build_feature_table,
    pqn_normalize,
    log_transform,
    pareto_scale,
    run_feature_pca,
    plot_chromatograms,
)
from condition_integration.params import METABOLOMICS_PARAMS

OUTPUT_DIR = Path("outputs")
OUTPUT_DIR.mkdir(exist_ok=True)

print("✓ Setup complete!")

# %% [markdown]
# ## 2. Parameter Configuration
#
# Peak thresholds are **relative to each sample's maximum**, so a sample with
# twice the overall signal is treated the same way.

# %%
DATA_FOLDER = None  # 🔧 Folder with one CSV per sample, or None to simulate
PARAMS = dict(METABOLOMICS_PARAMS)
PARAMS["rt_end"] = 19.0

for key, value in PARAMS.items():
    print(f"  {key}: {value}")

# %% [markdown]
# ## 3. Load Chromatograms

# %%
if DATA_FOLDER:
    chroms = read_chromatogram_csvs(DATA_FOLDER, rt_column=PARAMS["rt_column"])
    metadata = None
else:
    chroms, metadata = simulate_chromatograms()
    print(metadata)

plot_chromatograms(chroms, rt_column=PARAMS["rt_column"])
plt.show()

# %% [markdown]
# ## 4. Trim the RT Window
#
# The first half minute is dominated by unretained material and the end of the
# run by the column wash. Neither carries useful features.

# %%
chroms = filter_rt_range(chroms, PARAMS["rt_start"], PARAMS["rt_end"], rt_column=PARAMS["rt_column"])
print(f"RT range: {chroms[PARAMS['rt_column']].min():.2f} - {chroms[PARAMS['rt_column']].max():.2f} min")

# %% [markdown]
# ## 5. Peak Picking
#
# ### 🎛️ Parameter Tuning
#
# <details>
# <summary>📊 Too many tiny peaks in the baseline</summary>
#
# **Action:** raise `peak_height` or `peak_prominence`.
# </details>
#
# <details>
# <summary>📊 Shoulders of a large peak are split into separate peaks</summary>
#
# **Action:** increase `peak_distance`.
# </details>

# %%
peaks = detect_peaks(
    chroms,
    rt_column=PARAMS["rt_column"],
    height=PARAMS["peak_height"],
    distance=PARAMS["peak_distance"],
    prominence=PARAMS["peak_prominence"],
)
plot_chromatograms(chroms, peaks_df=peaks, rt_column=PARAMS["rt_column"], stacked=True)
plt.show()

print(peaks.groupby("sample").size())

# %% [markdown]
# ## 6. Feature Table
#
# The same compound elutes at slightly different RTs in each run. Peaks whose
# RTs chain together within `rt_tolerance` minutes become one feature.

# %%
table = build_feature_table(peaks, rt_tolerance=PARAMS["rt_tolerance"])
table.head()

# %% [markdown]
# ## 7. Normalization, Transformation and Scaling
#
# - **PQN** removes sample-wide dilution differences
# - **log10** makes multiplicative effects additive
# - **Pareto scaling** keeps large features important without letting them dominate

# %%
normalized = pareto_scale(log_transform(pqn_normalize(table)))
normalized.to_csv(OUTPUT_DIR / "feature_table.csv")
print(f"  Saved: {OUTPUT_DIR}/feature_table.csv")

# %% [markdown]
# ## 8. PCA of Samples

# %%
pca_model, scores, explained = run_feature_pca(normalized, n_components=2)
if metadata is not None:
    scores["group"] = metadata.set_index("sample").loc[scores.index, "group"]

fig, ax = plt.subplots(figsize=(6, 5))
sns.scatterplot(data=scores, x="PC1", y="PC2", hue="group" if "group" in scores else None, s=80, ax=ax)
ax.set_xlabel(f"PC1 ({explained[0]:.1f}%)")
ax.set_ylabel(f"PC2 ({explained[1]:.1f}%)")
plt.show()

# %% [markdown]
# ## ✅ Summary
#
# You turned raw chromatograms into a normalized feature table and saw the two
# sample groups separate along PC1. The same ideas (centering, PCA, comparing
# groups in a shared space) return in Lab 2 at single-cell scale.
