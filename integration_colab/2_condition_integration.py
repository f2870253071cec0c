# %% [markdown]
# # Lab 2: Integrating Single-Cell Data Across Conditions
#
# **Integration Labs - Part 2 of 3**
#
# **📥 Input:** h5ad with raw counts and a `condition` column (or simulated data)
# **📤 Output:** `outputs/integrated_data.h5ad`
# **➡️ Next:** `3_differential_expression.ipynb`
#
# ---
#
# When the same tissue is profiled under two conditions (e.g. control vs.
# interferon-stimulated), a pooled UMAP often splits every cell type in two.
# That split is real biology, but it hides the question we usually care about:
# *which cells correspond to each other across conditions?*
#
# In this lab you will
#
# 1. Build the pooled (unintegrated) embedding
# 2. Integrate **by hand**: project both conditions onto the control's PCA subspace
# 3. Compare against Harmony
# 4. Quantify mixing with nearest neighbors

# %% [markdown]
# ## 1. Setup

# %%
# !pip install -q scanpy anndata harmonypy igraph scikit-learn seaborn

import numpy as np
import matplotlib.pyplot as plt
import scanpy as sc
from scipy import sparse
from pathlib import Path

from condition_integration.data_loader import load_h5ad_dataset, simulate_condition_dataset
from condition_integration.processing import (
    normalize_and_log,
    select_hvgs,
    run_pca_umap_clustering,
    umap_from_representation,
    plot_embeddings,
)
from condition_integration.projection import (
    center_groups,
    fit_reference_basis,
    project_conditions,
    project_adata,
    reconstruct,
)
from condition_integration.integration import run_harmony, compare_integrations
from condition_integration.mixing import condition_mixing_fraction
from condition_integration.plotting import (
    vectors_to_long,
    plot_group_distributions,
    plot_projection,
    plot_mixing_comparison,
)

sc.settings.verbosity = 1
sc.settings.set_figure_params(dpi=80, facecolor="white")

OUTPUT_DIR = Path("outputs")
OUTPUT_DIR.mkdir(exist_ok=True)

print("✓ Setup complete!")
print(f"Scanpy version: {sc.__version__}")

# %% [markdown]
# ## 2. Parameter Configuration

# %%
INPUT_H5AD = None  # 🔧 e.g. "data/kang_ifnb.h5ad"; None = simulated data
CONDITION_KEY = "condition"
REFERENCE = "ctrl"
N_COMPS = 20

print(f"Reference condition: {REFERENCE}")
print(f"Rank P: {N_COMPS}")

# %% [markdown]
# ## 3. Load and Preprocess

# %%
if INPUT_H5AD:
    adata = load_h5ad_dataset(INPUT_H5AD, condition_key=CONDITION_KEY)
else:
    adata = simulate_condition_dataset(conditions=(REFERENCE, "stim"))

adata = normalize_and_log(adata)
adata = select_hvgs(adata)
adata = run_pca_umap_clustering(adata)

print(f"\n✓ {adata.n_obs:,} cells × {adata.n_vars:,} HVGs")

# %% [markdown]
# ## 4. The Problem: a Pooled Embedding
#
# Color the pooled UMAP by condition and by cell type. Do the conditions
# overlap, or does every cell type appear twice?

# %%
plot_embeddings(adata, color_keys=(CONDITION_KEY, "cell_type", "leiden"))

# %% [markdown]
# ## 5. Integration by Hand
#
# The whole procedure is three lines of linear algebra. With `X` as a
# genes × cells matrix:
#
# ```
# X_ref_c  = X_ref  - mean(X_ref)      # 1. center each condition
# X_stim_c = X_stim - mean(X_stim)
# B = PCA(X_ref_c, P)                  # 2. basis from the reference only
# Z = B.T @ [X_ref_c, X_stim_c]        # 3. project everybody
# ```
#
# Centering each condition separately removes the *average* condition shift.
# Projecting onto the reference's PCs asks: how does each stimulated cell look
# in terms of the axes along which control cells differ from each other?

# %%
lognorm = adata.layers["lognorm"]
if sparse.issparse(lognorm):
    lognorm = lognorm.toarray()
X = np.asarray(lognorm, dtype=float).T  # genes × cells, dense
labels = adata.obs[CONDITION_KEY].astype(str).to_numpy()

X_centered, group_means = center_groups(X, labels)
for cond in group_means.columns:
    cond_mean = X_centered[:, labels == cond].mean(axis=1)
    print(f"  {cond}: max |per-gene mean| after centering = {np.abs(cond_mean).max():.2e}")

basis, evr = fit_reference_basis(X_centered[:, labels == REFERENCE], N_COMPS)
print(f"\nBasis shape: {basis.shape}")
print(f"B.T @ B is identity: {np.allclose(basis.T @ basis, np.eye(N_COMPS))}")

# %% [markdown]
# `project_conditions` wraps the same steps and keeps the cells in their
# original order, so the result lines up with `adata.obs`.

# %%
result = project_conditions(X, labels, REFERENCE, N_COMPS)
print(f"Projected matrix: {result.coordinates.shape} (P × cells)")

plot_projection(result, obs_names=adata.obs_names)
plt.show()

# %% [markdown]
# ### How much of each condition does the reference subspace capture?
#
# Reconstruct each condition from its P coordinates and compare with the data.
# The reference is reconstructed best by construction; a large gap for the
# other condition means its variation lives partly outside the reference
# subspace.

# %%
for cond in group_means.columns:
    X_cond = X[:, labels == cond]
    residual = X_cond - reconstruct(result, cond)
    centered = X_cond - X_cond.mean(axis=1, keepdims=True)
    captured = 1 - (residual**2).sum() / (centered**2).sum()
    print(f"  {cond}: {captured * 100:.1f}% of variance captured")

# %% [markdown]
# ### ⚠️ The choice of reference matters
#
# The basis only sees the reference's variance. Swap the reference and the
# embedding changes. Neither choice is "correct"; which one integrates better
# depends on the data.

# %%
other = [c for c in group_means.columns if c != REFERENCE][0]
swapped = project_conditions(X, labels, other, N_COMPS)
print(f"Same embedding after swapping reference: {np.allclose(result.coordinates, swapped.coordinates)}")

# %% [markdown]
# ## 6. Store, Embed and Compare with Harmony

# %%
project_adata(adata, CONDITION_KEY, REFERENCE, N_COMPS, layer="lognorm", key_added="X_proj")
umap_key = umap_from_representation(adata, "X_proj")
plot_embeddings(adata, color_keys=(CONDITION_KEY, "cell_type"), basis=umap_key.removeprefix("X_"))

run_harmony(adata, condition_key=CONDITION_KEY)
harmony_umap = umap_from_representation(adata, "X_pca_harmony")
plot_embeddings(adata, color_keys=(CONDITION_KEY, "cell_type"), basis=harmony_umap.removeprefix("X_"))

# %% [markdown]
# ## 7. Quantifying Mixing
#
# For each cell, what fraction of its 30 nearest neighbors comes from the other
# condition? With two equally sized conditions, perfect mixing gives ~0.5.

# %%
mixing = {
    "pooled PCA": condition_mixing_fraction(adata.obsm["X_pca"][:, :N_COMPS], labels),
    "projection": condition_mixing_fraction(adata.obsm["X_proj"], labels),
    "harmony": condition_mixing_fraction(adata.obsm["X_pca_harmony"][:, :N_COMPS], labels),
}
mixing_long = vectors_to_long(mixing, value_name="mixing_fraction", group_name="embedding")
plot_group_distributions(mixing_long, value_name="mixing_fraction", group_name="embedding")
plt.show()

summary = compare_integrations(adata, condition_key=CONDITION_KEY, n_comps=N_COMPS)
print(summary.to_string(index=False))
plot_mixing_comparison(summary)
plt.show()

# %% [markdown]
# ### 🎛️ Interpreting the Table
#
# <details>
# <summary>📊 Mixing close to 1 (relative) but cell types blur together</summary>
#
# **Action:** over-integration. Lower `N_COMPS` or Harmony's `theta`.
# </details>
#
# <details>
# <summary>📊 Projection mixes well with one reference but not the other</summary>
#
# **Action:** expected. Use the condition with the richer cell-type structure as reference.
# </details>

# %%
adata.write(OUTPUT_DIR / "integrated_data.h5ad")
print(f"✓ Saved: {OUTPUT_DIR}/integrated_data.h5ad")
