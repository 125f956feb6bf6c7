"""Validator for section and reference schema."""

import logging
from typing import Dict, List, Optional, Tuple

import anndata
import numpy as np
from scipy import sparse

from ..dataset import RAW_LAYER, SPATIAL_KEY

logger = logging.getLogger(__name__)


def validate_schema(
    adata: anndata.AnnData,
    strict: bool = False,
    label_key: Optional[str] = None,
) -> Tuple[bool, List[str]]:
    """
    Validate that the AnnData object can enter the pipeline.

    Parameters
    ----------
    adata : anndata.AnnData
        Section Dataset or reference atlas.
    strict : bool
        If True, missing coordinates and non-count data are errors.
    label_key : str, optional
        Required ``obs`` label column (for references). When given,
        coordinates are not required.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of warning/error messages)
    """
    messages = []
    is_valid = True

    if adata.n_obs == 0:
        messages.append("ERROR: No spots (observations) in the dataset.")
        is_valid = False

    if adata.n_vars == 0:
        messages.append("ERROR: No genes (variables) in the dataset.")
        is_valid = False

    if adata.X is None and not adata.layers:
        messages.append("ERROR: No data matrix found (neither adata.X nor adata.layers).")
        is_valid = False

    if not adata.obs.index.is_unique:
        messages.append("ERROR: Spot IDs (obs.index) are not unique.")
        is_valid = False

    if not adata.var.index.is_unique:
        messages.append("WARNING: Gene IDs (var.index) are not unique.")

    if label_key is not None:
        if label_key not in adata.obs.columns:
            messages.append(f"ERROR: Label column '{label_key}' not found in adata.obs.")
            is_valid = False
    elif SPATIAL_KEY in adata.obsm:
        spatial_coords = np.asarray(adata.obsm[SPATIAL_KEY])
        if spatial_coords.shape[1] != 2:
            messages.append(
                f"ERROR: Spatial coordinates in obsm['{SPATIAL_KEY}'] should have 2 columns (x, y), "
                f"found {spatial_coords.shape[1]}."
            )
            is_valid = False
        if np.any(np.isnan(spatial_coords)):
            messages.append(f"WARNING: Spatial coordinates contain NaN values in obsm['{SPATIAL_KEY}'].")
    elif strict:
        messages.append("ERROR: No spatial coordinates found in adata.obsm.")
        is_valid = False
    else:
        messages.append(f"WARNING: No spatial coordinates found. Expected '{SPATIAL_KEY}' in adata.obsm.")

    if adata.n_obs and adata.n_vars and (adata.X is not None or RAW_LAYER in adata.layers):
        counts = check_counts_data(adata, layer=RAW_LAYER if RAW_LAYER in adata.layers else None)
        if counts["has_negative"] or not counts["is_integer"]:
            level = "ERROR" if strict else "WARNING"
            messages.append(f"{level}: Expression matrix does not look like raw counts.")
            if strict:
                is_valid = False

    logger.info(f"Validation completed: {'PASSED' if is_valid else 'FAILED'}")
    for msg in messages:
        if msg.startswith("ERROR"):
            logger.error(msg)
        else:
            logger.warning(msg)

    return is_valid, messages


def check_counts_data(adata: anndata.AnnData, layer: Optional[str] = None) -> Dict:
    """
    Check if the data looks like raw counts.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    layer : str, optional
        Layer to check. If None, checks adata.X.

    Returns
    -------
    dict
        'is_integer', 'has_negative', 'max_value', 'mean_value', 'sparsity'
    """
    if layer is not None:
        if layer not in adata.layers:
            raise ValueError(f"Layer '{layer}' not found in adata.layers")
        data = adata.layers[layer]
    else:
        data = adata.X

    if data is None:
        raise ValueError("No data matrix found")

    if sparse.issparse(data):
        values = data.data
        n_zero = data.shape[0] * data.shape[1] - data.nnz
    else:
        values = np.asarray(data).ravel()
        n_zero = int(np.sum(values == 0))

    total = data.shape[0] * data.shape[1]
    return {
        "is_integer": bool(np.all(np.mod(values, 1) == 0)),
        "has_negative": bool(np.any(values < 0)),
        "max_value": float(values.max()) if values.size else 0.0,
        "mean_value": float(values.sum() / total) if total else 0.0,
        "sparsity": float(n_zero / total) if total else 0.0,
    }
