# %% [markdown]
# # Lab 3: Differential Expression and Abundance Between Conditions
#
# **Integration Labs - Part 3 of 3**
#
# **📥 Input:** `outputs/integrated_data.h5ad`
# **📤 Output:** `outputs/pseudobulk_de.csv`, `outputs/neighborhood_abundance.csv`
#
# ---
#
# Integration tells us which cells correspond across conditions. Now we ask two
# questions about them:
#
# 1. **Expression:** within a cell type, which genes change with the condition?
# 2. **Abundance:** are some cell states more frequent in one condition?

# %%
import matplotlib.pyplot as plt
import pandas as pd
import scanpy as sc
from pathlib import Path

from condition_integration.differential_expression import (
    create_pseudobulk,
    run_de_for_celltype,
    run_de_with_wilcoxon,
    plot_volcano,
)
from condition_integration.neighborhoods import neighborhood_abundance, annotate_neighborhoods
from condition_integration.params import DE_PARAMS, NEIGHBORHOOD_PARAMS

OUTPUT_DIR = Path("outputs")

print("Loading data from Lab 2...")
adata = sc.read_h5ad(OUTPUT_DIR / "integrated_data.h5ad")

checks = {
    "Raw counts": "counts" in adata.layers,
    "Projection": "X_proj" in adata.obsm,
    "Sample info": "sample" in adata.obs.columns,
}
for check, passed in checks.items():
    print(f"  {'✓' if passed else '✗'} {check}")
    if not passed:
        raise ValueError(f"Missing {check} - run Lab 2!")

CONDITION_KEY = adata.uns["X_proj"]["condition_key"]
REFERENCE = adata.uns["X_proj"]["reference"]
TEST = [c for c in adata.obs[CONDITION_KEY].astype(str).unique() if c != REFERENCE][0]
print(f"\nContrast: {TEST} vs {REFERENCE}")

# %% [markdown]
# ## 1. Why Pseudobulk?
#
# Cells from the same animal are not independent replicates. Testing cell by
# cell treats thousands of cells as evidence and produces tiny p-values.
# Summing counts per **sample × cell type** and testing with DESeq2 respects
# the actual replication.
#
# First, the tempting (but overconfident) cell-level test:

# %%
wilcoxon = run_de_with_wilcoxon(adata, CONDITION_KEY, TEST, REFERENCE, cell_type="all")
print(f"Cell-level: {wilcoxon['significant'].sum()} significant genes")

# %% [markdown]
# ## 2. Pseudobulk DESeq2

# %%
pb_df, sample_info_df = create_pseudobulk(adata, condition_key=CONDITION_KEY)
sample_info_df

# %%
contrasts = [(f"{TEST}_vs_{REFERENCE}", TEST, REFERENCE)]
results = [
    run_de_for_celltype(pb_df, sample_info_df, ct, contrasts, DE_PARAMS)
    for ct in sample_info_df["celltype"].unique()
]
de_results = pd.concat([r for r in results if r is not None], ignore_index=True)
de_results.to_csv(OUTPUT_DIR / "pseudobulk_de.csv", index=False)
print(f"  Saved: {OUTPUT_DIR}/pseudobulk_de.csv")

de_results.groupby("cell_type")["significant"].sum()

# %%
first_type = de_results["cell_type"].iloc[0]
plot_volcano(de_results, cell_type=first_type, contrast=contrasts[0][0])

# %% [markdown]
# ### 🎛️ Compare the Two Tests
#
# <details>
# <summary>📊 Cell-level test finds many more genes</summary>
#
# **Expected.** Pseudoreplication inflates significance. Trust the pseudobulk list.
# </details>

# %% [markdown]
# ## 3. Neighborhood Abundance
#
# Pick ~10% of cells as centers, take their 30 nearest neighbors in the
# integrated space and test whether the stimulated share differs from the
# overall share. Integration matters here: in an unintegrated space every
# neighborhood would be dominated by a single condition.

# %%
da = neighborhood_abundance(
    adata.obsm["X_proj"],
    adata.obs[CONDITION_KEY],
    TEST,
    sample_fraction=NEIGHBORHOOD_PARAMS["sample_fraction"],
    obs_names=adata.obs_names,
)
da = annotate_neighborhoods(da, adata, key="cell_type")
da.to_csv(OUTPUT_DIR / "neighborhood_abundance.csv", index=False)

fig, ax = plt.subplots(figsize=(7, 4))
da.boxplot(column="log2FC", by="cell_type", ax=ax)
ax.axhline(0, color="gray", linestyle="--")
plt.suptitle("")
plt.show()

# %% [markdown]
# ## ✅ Summary
#
# - Integration lets you line up cells across conditions
# - Expression changes: test per cell type on pseudobulk samples
# - Abundance changes: test per neighborhood in the integrated space
