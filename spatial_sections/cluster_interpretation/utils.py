"""Utility functions for cluster interpretation."""

import logging
from typing import Optional

import anndata
import numpy as np
from scipy import sparse

from ..dataset import RAW_LAYER

logger = logging.getLogger(__name__)


def prepare_expression_data(
    adata: anndata.AnnData,
    use_layer: Optional[str] = RAW_LAYER,
    target_sum: float = 1e4,
) -> np.ndarray:
    """
    Log-normalize raw counts for marker gene computation.

    Parameters
    ----------
    adata : anndata.AnnData
        Input Dataset.
    use_layer : str, optional
        Count layer to use. If None, uses adata.X.
    target_sum : float
        Counts per spot after library-size scaling.

    Returns
    -------
    np.ndarray
        Dense ``log1p(counts / total * target_sum)`` matrix (spots × genes).
    """
    if use_layer is not None:
        if use_layer not in adata.layers:
            raise ValueError(f"Layer '{use_layer}' not found in adata.layers")
        expr = adata.layers[use_layer]
    else:
        expr = adata.X

    if sparse.issparse(expr):
        expr = expr.toarray()
    expr = np.asarray(expr, dtype=np.float64)

    cell_sums = expr.sum(axis=1, keepdims=True)
    cell_sums[cell_sums == 0] = 1
    return np.log1p(expr / cell_sums * target_sum)


def scale_to_target_sum(counts, target_sum: float = 1e4) -> np.ndarray:
    """Library-size scale a spots × genes count matrix without log transform."""
    if sparse.issparse(counts):
        counts = counts.toarray()
    counts = np.asarray(counts, dtype=np.float64)
    sums = counts.sum(axis=1, keepdims=True)
    sums[sums == 0] = 1
    return counts / sums * target_sum
