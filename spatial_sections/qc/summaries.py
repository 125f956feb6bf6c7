"""QC summary and statistics functions."""

import logging
from typing import Dict, List, Mapping, Optional

import anndata
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

QC_COLUMNS = ["total_count", "detected_feature_count", "mito_fraction"]


def compute_qc_summary(
    adata: anndata.AnnData,
    qc_columns: Optional[List[str]] = None,
    group_by: Optional[str] = None,
) -> Dict:
    """
    Compute summary statistics for QC metrics.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with QC metrics in ``obs``.
    qc_columns : list of str, optional
        Metric columns to summarize. Defaults to the three spot metrics.
    group_by : str, optional
        Column name to group by (e.g., 'section').

    Returns
    -------
    dict
        Dictionary containing summary statistics.
    """
    qc_columns = qc_columns or [c for c in QC_COLUMNS if c in adata.obs.columns]

    summary = {"qc_columns": qc_columns, "n_spots": adata.n_obs, "overall": {}}

    for col in qc_columns:
        col_data = adata.obs[col]
        summary["overall"][col] = {
            "mean": float(col_data.mean()),
            "median": float(col_data.median()),
            "std": float(col_data.std()),
            "min": float(col_data.min()),
            "max": float(col_data.max()),
        }

    if group_by and group_by in adata.obs.columns:
        summary["by_group"] = {}
        for group_name, group_data in adata.obs.groupby(group_by, observed=True):
            entry = {"n_spots": len(group_data)}
            for col in qc_columns:
                entry[col] = {
                    "mean": float(group_data[col].mean()),
                    "median": float(group_data[col].median()),
                }
            summary["by_group"][str(group_name)] = entry

    return summary


def compute_filter_stats(adata: anndata.AnnData, mask: Optional[np.ndarray] = None) -> Dict:
    """
    Compute statistics about filtering results.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset before filtering.
    mask : np.ndarray, optional
        Boolean mask of spots that passed. If None, all spots pass.

    Returns
    -------
    dict
        n_total, n_kept, n_filtered and percent_kept.
    """
    if mask is None:
        mask = np.ones(adata.n_obs, dtype=bool)

    n_total = int(adata.n_obs)
    n_kept = int(np.sum(mask))

    return {
        "n_total": n_total,
        "n_kept": n_kept,
        "n_filtered": n_total - n_kept,
        "percent_kept": 100.0 * n_kept / n_total if n_total else 0.0,
    }


def compute_filter_report(filtered: Mapping[str, anndata.AnnData]) -> pd.DataFrame:
    """
    Tabulate features and spots before and after QC, one row per section.

    Parameters
    ----------
    filtered : mapping of str to AnnData
        Section name to filtered Dataset (with ``uns['qc']`` recorded).

    Returns
    -------
    pd.DataFrame
        Columns Section, Features_Before, Spots_Before, Features_After,
        Spots_After, Features_Removed, Spots_Removed.
    """
    rows = []
    for section, adata in filtered.items():
        qc = adata.uns.get("qc")
        if qc is None:
            raise KeyError(f"Section '{section}' has no QC record; run apply_qc_filters first")
        rows.append(
            {
                "Section": section,
                "Features_Before": qc["genes_before"],
                "Spots_Before": qc["spots_before"],
                "Features_After": qc["genes_after"],
                "Spots_After": qc["spots_after"],
                "Features_Removed": qc["genes_before"] - qc["genes_after"],
                "Spots_Removed": qc["spots_before"] - qc["spots_after"],
            }
        )
    return pd.DataFrame(rows)


def compare_pre_post_filtering(
    adata_pre: anndata.AnnData,
    adata_post: anndata.AnnData,
    qc_columns: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Compare QC metric means and medians before and after filtering.

    Parameters
    ----------
    adata_pre : anndata.AnnData
        Dataset before filtering (metrics must be present in ``obs``).
    adata_post : anndata.AnnData
        Dataset after filtering.
    qc_columns : list of str, optional
        Metric columns to compare.

    Returns
    -------
    pd.DataFrame
        One row per metric with pre/post mean and median.
    """
    qc_columns = qc_columns or [
        c for c in QC_COLUMNS if c in adata_pre.obs.columns and c in adata_post.obs.columns
    ]

    rows = []
    for col in qc_columns:
        rows.append(
            {
                "metric": col,
                "pre_mean": float(adata_pre.obs[col].mean()),
                "post_mean": float(adata_post.obs[col].mean()),
                "pre_median": float(adata_pre.obs[col].median()),
                "post_median": float(adata_post.obs[col].median()),
            }
        )

    return pd.DataFrame(rows)
