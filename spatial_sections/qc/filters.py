"""QC metrics and spot filtering."""

import logging
from typing import Dict, Optional, Tuple

import anndata
import numpy as np
import pandas as pd
from scipy import sparse

from ..dataset import RAW_LAYER, validate_dataset
from ..errors import EmptyDatasetError
from ..modeling.parameters import QCParameters

logger = logging.getLogger(__name__)

STAGE = "quality_control"


def compute_qc_metrics(
    adata: anndata.AnnData,
    mito_prefix: str = "mt-",
    layer: str = RAW_LAYER,
) -> pd.DataFrame:
    """
    Compute per-spot QC metrics from raw counts.

    Parameters
    ----------
    adata : anndata.AnnData
        Input Dataset with raw counts in ``layers[layer]``.
    mito_prefix : str
        Gene-id prefix identifying mitochondrial genes (case-insensitive).
    layer : str
        Layer holding raw counts.

    Returns
    -------
    pd.DataFrame
        Columns total_count, detected_feature_count, mito_fraction, indexed
        by spot id. Spots with zero counts get mito_fraction 0.
    """
    counts = adata.layers[layer]
    mito_mask = adata.var_names.str.lower().str.startswith(mito_prefix.lower())

    if sparse.issparse(counts):
        total = np.asarray(counts.sum(axis=1)).ravel()
        detected = np.asarray((counts > 0).sum(axis=1)).ravel()
        mito = np.asarray(counts[:, mito_mask].sum(axis=1)).ravel()
    else:
        counts = np.asarray(counts)
        total = counts.sum(axis=1)
        detected = (counts > 0).sum(axis=1)
        mito = counts[:, mito_mask].sum(axis=1)

    with np.errstate(divide="ignore", invalid="ignore"):
        mito_fraction = np.where(total > 0, mito / np.where(total > 0, total, 1), 0.0)

    logger.debug(f"{int(mito_mask.sum())} genes match mitochondrial prefix '{mito_prefix}'")

    return pd.DataFrame(
        {
            "total_count": total.astype(np.float64),
            "detected_feature_count": detected.astype(np.int64),
            "mito_fraction": mito_fraction.astype(np.float64),
        },
        index=adata.obs_names,
    )


def qc_bounds(params: QCParameters) -> Dict[str, Tuple[Optional[float], Optional[float]]]:
    """Map metric columns to exclusive (lower, upper) bounds."""
    return {
        "detected_feature_count": (params.min_features, params.max_features),
        "total_count": (params.min_counts, params.max_counts),
        "mito_fraction": (None, params.max_mito_fraction),
    }


def build_filter_mask(
    metrics: pd.DataFrame,
    filter_criteria: Dict[str, tuple],
) -> np.ndarray:
    """
    Create a boolean mask of spots that pass all exclusive bounds.

    Parameters
    ----------
    metrics : pd.DataFrame
        Per-spot metric table.
    filter_criteria : dict
        Dictionary mapping column names to (min_value, max_value) tuples.
        A spot passes when ``min < value < max``; use None for unbounded.

    Returns
    -------
    np.ndarray
        Boolean mask where True indicates spots that pass all filters.
    """
    mask = np.ones(len(metrics), dtype=bool)

    for col_name, (min_val, max_val) in filter_criteria.items():
        if col_name not in metrics.columns:
            raise KeyError(f"QC metric '{col_name}' not found")

        col_data = metrics[col_name].to_numpy()

        if min_val is not None:
            mask &= col_data > min_val

        if max_val is not None:
            mask &= col_data < max_val

        logger.info(
            f"Filter '{col_name}' ({min_val}, {max_val}): "
            f"{int(np.sum(~mask))} spots filtered, {int(np.sum(mask))} remaining"
        )

    return mask


def apply_qc_filters(
    adata: anndata.AnnData,
    params: Optional[QCParameters] = None,
) -> anndata.AnnData:
    """
    Compute QC metrics and drop spots outside the configured bounds.

    The input is not modified. The returned Dataset carries the metrics in
    ``obs`` and the before/after spot and gene counts in ``uns['qc']``.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with ``raw_counts``.
    params : QCParameters, optional
        Filter bounds; defaults are used when omitted.

    Returns
    -------
    anndata.AnnData
        Filtered copy of the Dataset.

    Raises
    ------
    EmptyDatasetError
        If no spot passes the filters.
    """
    params = params or QCParameters()
    validate_dataset(adata, STAGE)

    metrics = compute_qc_metrics(adata, mito_prefix=params.mito_prefix)
    mask = build_filter_mask(metrics, qc_bounds(params))

    n_kept = int(mask.sum())
    n_filtered = int((~mask).sum())

    if n_kept == 0:
        raise EmptyDatasetError(
            STAGE, f"all {adata.n_obs} spots were removed by the QC filters"
        )

    logger.info(
        f"QC filtering complete: {n_kept} spots kept, {n_filtered} spots filtered "
        f"({100 * n_filtered / adata.n_obs:.1f}%)"
    )

    filtered = adata[mask, :].copy()
    for col in metrics.columns:
        filtered.obs[col] = metrics.loc[filtered.obs_names, col].to_numpy()

    filtered.uns["qc"] = {
        "spots_before": int(adata.n_obs),
        "spots_after": n_kept,
        "genes_before": int(adata.n_vars),
        "genes_after": int(filtered.n_vars),
        "bounds": {k: list(v) for k, v in qc_bounds(params).items()},
        "mito_prefix": params.mito_prefix,
    }

    return filtered
