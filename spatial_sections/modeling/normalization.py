"""Variance-stabilizing normalization and variable feature ranking."""

import logging
from typing import List, Optional, Tuple

import anndata
import numpy as np
import pandas as pd
import scanpy as sc

from ..dataset import (
    NORMALIZED_LAYER,
    RAW_LAYER,
    VARIABLE_FEATURES_KEY,
    validate_dataset,
)
from .parameters import NormalizationParameters

logger = logging.getLogger(__name__)

STAGE = "normalization"


def rank_variable_features(residual_variances: pd.Series, n_top_genes: int) -> List[str]:
    """
    Rank genes by residual variance, descending, with gene id as tie-break.

    Parameters
    ----------
    residual_variances : pd.Series
        Residual variance per gene, indexed by gene id. NaN counts as lowest.
    n_top_genes : int
        Number of genes to return.

    Returns
    -------
    list of str
        Selected gene ids in rank order.
    """
    frame = pd.DataFrame(
        {
            "gene": residual_variances.index.astype(str),
            "residual_variance": residual_variances.fillna(-np.inf).to_numpy(),
        }
    )
    frame = frame.sort_values(
        ["residual_variance", "gene"], ascending=[False, True], kind="mergesort"
    )
    return frame["gene"].head(n_top_genes).tolist()


def compute_pearson_residuals(
    adata: anndata.AnnData,
    params: Optional[NormalizationParameters] = None,
    layer: str = RAW_LAYER,
) -> Tuple[np.ndarray, pd.Series]:
    """
    Pearson residuals and per-gene residual variance for a count layer.

    Parameters
    ----------
    adata : anndata.AnnData
        Object holding counts in ``layers[layer]``.
    params : NormalizationParameters, optional
        Overdispersion, clipping and the number of genes flagged.
    layer : str
        Count layer.

    Returns
    -------
    tuple
        (dense residual matrix, residual variances indexed by gene id)
    """
    params = params or NormalizationParameters()
    n_top_genes = int(min(params.n_top_genes, adata.n_vars))

    work = anndata.AnnData(X=adata.layers[layer].copy(), obs=adata.obs[[]], var=adata.var[[]])

    logger.info(f"Ranking {n_top_genes} variable features by residual variance")
    sc.experimental.pp.highly_variable_genes(
        work,
        flavor="pearson_residuals",
        n_top_genes=n_top_genes,
        theta=params.theta,
        clip=params.clip,
        inplace=True,
    )
    residual_variances = work.var["residual_variances"].copy()

    logger.info("Computing Pearson residuals")
    with np.errstate(divide="ignore", invalid="ignore"):
        result = sc.experimental.pp.normalize_pearson_residuals(
            work, theta=params.theta, clip=params.clip, inplace=False
        )
    # Genes with zero counts in every spot have undefined residuals
    residuals = np.nan_to_num(np.asarray(result["X"], dtype=np.float32), nan=0.0)
    return residuals, residual_variances


def normalize_dataset(
    adata: anndata.AnnData,
    params: Optional[NormalizationParameters] = None,
) -> anndata.AnnData:
    """
    Apply analytic Pearson-residual normalization and select variable features.

    Residuals are computed from ``raw_counts`` under a negative binomial
    mean-variance model with fixed overdispersion ``theta``; genes are ranked
    by residual variance. The spot and gene axes are unchanged.

    Parameters
    ----------
    adata : anndata.AnnData
        QC-filtered Dataset with ``raw_counts``.
    params : NormalizationParameters, optional
        Normalization settings.

    Returns
    -------
    anndata.AnnData
        Copy with ``layers['normalized']``, ``var['residual_variance']``,
        ``var['variable_feature']`` and the ordered list in
        ``uns['variable_features']``.
    """
    params = params or NormalizationParameters()
    validate_dataset(adata, STAGE)

    logger.info("Starting Pearson-residual normalization")

    adata = adata.copy()
    n_top_genes = int(min(params.n_top_genes, adata.n_vars))
    residuals, residual_variances = compute_pearson_residuals(adata, params)
    variable_features = rank_variable_features(residual_variances, n_top_genes)

    adata.layers[NORMALIZED_LAYER] = residuals
    adata.var["residual_variance"] = residual_variances.to_numpy()
    adata.var["variable_feature"] = adata.var_names.isin(variable_features)
    adata.uns[VARIABLE_FEATURES_KEY] = variable_features
    adata.uns["normalization"] = {
        "method": "pearson_residuals",
        "theta": params.theta,
        "clip": params.clip,
        "n_top_genes": n_top_genes,
    }

    logger.info(
        f"Normalization complete: {len(variable_features)} variable features "
        f"out of {adata.n_vars} genes"
    )

    return adata
