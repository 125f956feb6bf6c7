"""Cluster summary computation."""

import logging
from typing import Optional

import anndata
import pandas as pd

from ..dataset import CLUSTER_COL, SECTION_COL, UNASSIGNED_CLUSTER, UNASSIGNED_LABEL

logger = logging.getLogger(__name__)


def compute_cluster_summary(
    adata: anndata.AnnData,
    label_col: str = CLUSTER_COL,
    sample_col: Optional[str] = SECTION_COL,
    exclude_unassigned: bool = True,
) -> pd.DataFrame:
    """
    Compute spot counts per group, optionally broken down by section.

    Parameters
    ----------
    adata : anndata.AnnData
        Input Dataset.
    label_col : str
        Column in adata.obs containing group labels.
    sample_col : str, optional
        Column with section names. Per-section counts are added when present.
    exclude_unassigned : bool
        If True, drop spots carrying the unassigned sentinel.

    Returns
    -------
    pd.DataFrame
        Columns: group_id, n_spots, percent_of_total, [per-section counts]
    """
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    obs_data = adata.obs
    if exclude_unassigned:
        mask = ~obs_data[label_col].isin([UNASSIGNED_CLUSTER, UNASSIGNED_LABEL])
        obs_data = obs_data[mask & obs_data[label_col].notna()]

    total = len(obs_data)
    group_counts = obs_data[label_col].value_counts()

    summary = pd.DataFrame(
        {
            "group_id": group_counts.index,
            "n_spots": group_counts.values,
            "percent_of_total": (group_counts.values / max(total, 1) * 100).round(2),
        }
    )

    if sample_col and sample_col in obs_data.columns:
        crosstab = pd.crosstab(obs_data[label_col], obs_data[sample_col])
        crosstab_reset = crosstab.reset_index().rename(columns={label_col: "group_id"})
        crosstab_reset.columns = [str(c) for c in crosstab_reset.columns]
        summary = summary.merge(crosstab_reset, on="group_id", how="left")

    summary = summary.sort_values("group_id").reset_index(drop=True)

    logger.info(f"Computed summary for {len(summary)} groups in '{label_col}'")

    return summary
