"""PCA, automatic rank selection and UMAP embedding."""

import logging
from typing import Optional, Sequence

import anndata
import numpy as np
import scanpy as sc

from ..dataset import (
    NORMALIZED_LAYER,
    PCA_KEY,
    UMAP_KEY,
    get_variable_features,
    layer_as_dense,
    validate_dataset,
)
from ..errors import InsufficientVarianceExplainedError
from ..utils.locks import seeded_primitive_lock
from .parameters import ReductionParameters

logger = logging.getLogger(__name__)

STAGE = "dimensionality_reduction"

# Float slack when comparing a cumulative sum against the threshold
_CUMSUM_TOL = 1e-9


def cumulative_variance(variance_ratio: Sequence[float], basis: str = "computed") -> np.ndarray:
    """
    Cumulative proportion of variance explained.

    Parameters
    ----------
    variance_ratio : sequence of float
        Per-component variance explained, as a fraction of total variance.
    basis : {'computed', 'total'}
        'computed' rescales the fractions so the computed components sum
        to 1; 'total' keeps them as fractions of total variance.

    Returns
    -------
    np.ndarray
        Monotonically non-decreasing cumulative fractions.
    """
    v = np.clip(np.asarray(variance_ratio, dtype=np.float64), 0.0, None)
    if basis == "computed":
        total = v.sum()
        if total > 0:
            v = v / total
    elif basis != "total":
        raise ValueError(f"Unknown variance basis: {basis}")
    return np.cumsum(v)


def select_n_components(
    variance_ratio: Sequence[float],
    threshold: float = 0.90,
    basis: str = "computed",
) -> int:
    """
    Smallest number of components whose cumulative variance reaches threshold.

    Parameters
    ----------
    variance_ratio : sequence of float
        Per-component variance explained.
    threshold : float
        Target cumulative fraction.
    basis : {'computed', 'total'}
        See :func:`cumulative_variance`.

    Returns
    -------
    int
        Number of components (1-based count).

    Raises
    ------
    InsufficientVarianceExplainedError
        If no prefix of the computed components reaches the threshold.
    """
    cum = cumulative_variance(variance_ratio, basis=basis)
    reached = np.flatnonzero(cum >= threshold - _CUMSUM_TOL)
    if len(reached) == 0:
        best = float(cum[-1]) if len(cum) else 0.0
        raise InsufficientVarianceExplainedError(
            STAGE,
            f"{len(cum)} components explain {best:.3f} of variance, "
            f"below the {threshold:.2f} target",
            reached=best,
        )
    return int(reached[0]) + 1


def run_pca(
    adata: anndata.AnnData,
    layer: str = NORMALIZED_LAYER,
    features: Optional[Sequence[str]] = None,
    max_components: int = 50,
    random_state: int = 0,
) -> anndata.AnnData:
    """
    Compute principal components on ``layer`` restricted to ``features``.

    Stores scores in ``obsm['X_pca']`` and loadings / variance in
    ``uns['pca']``. Modifies and returns ``adata``.
    """
    features = list(features) if features is not None else get_variable_features(adata)
    if not features:
        raise ValueError("No features given and no variable features recorded; normalize first")

    data = layer_as_dense(adata, layer, genes=features)
    n_comps = int(min(max_components, min(data.shape) - 1))
    if n_comps < 1:
        raise InsufficientVarianceExplainedError(
            STAGE, f"cannot compute components from a {data.shape} matrix"
        )

    logger.info(f"Computing {n_comps} principal components on {len(features)} features")
    work = anndata.AnnData(X=data)
    sc.tl.pca(work, n_comps=n_comps, svd_solver="full", random_state=random_state)

    adata.obsm[PCA_KEY] = np.asarray(work.obsm["X_pca"])
    adata.uns["pca"] = {
        "variance_ratio": np.asarray(work.uns["pca"]["variance_ratio"]),
        "variance": np.asarray(work.uns["pca"]["variance"]),
        "features": features,
        "layer": layer,
    }
    return adata


def run_umap(
    adata: anndata.AnnData,
    n_dims: int,
    n_neighbors: int = 15,
    min_dist: float = 0.5,
    random_state: int = 0,
) -> anndata.AnnData:
    """Compute a 2D UMAP from the first ``n_dims`` principal components."""
    if PCA_KEY not in adata.obsm:
        raise ValueError("PCA not found. Run run_pca first.")

    n_neighbors = int(max(2, min(n_neighbors, adata.n_obs - 1)))
    work = anndata.AnnData(X=np.zeros((adata.n_obs, 1), dtype=np.float32))
    work.obsm["X_rep"] = np.asarray(adata.obsm[PCA_KEY][:, :n_dims])

    logger.info(f"Computing UMAP from {n_dims} PCs (n_neighbors={n_neighbors}, seed={random_state})")
    with seeded_primitive_lock:
        sc.pp.neighbors(work, n_neighbors=n_neighbors, use_rep="X_rep", random_state=random_state)
        sc.tl.umap(work, min_dist=min_dist, random_state=random_state)

    adata.obsm[UMAP_KEY] = np.asarray(work.obsm["X_umap"])
    adata.uns["umap"] = {
        "n_dims": int(n_dims),
        "n_neighbors": n_neighbors,
        "min_dist": min_dist,
        "random_state": random_state,
    }
    return adata


def reduce_dimensions(
    adata: anndata.AnnData,
    params: Optional[ReductionParameters] = None,
    layer: str = NORMALIZED_LAYER,
    features: Optional[Sequence[str]] = None,
    random_state: int = 0,
) -> anndata.AnnData:
    """
    PCA, rank selection and UMAP as one stage.

    Parameters
    ----------
    adata : anndata.AnnData
        Normalized Dataset.
    params : ReductionParameters, optional
        Reduction settings.
    layer : str
        Expression layer to project (``corrected`` for merged sections).
    features : sequence of str, optional
        Genes to use. Defaults to the recorded variable features.
    random_state : int
        Seed for the UMAP optimisation.

    Returns
    -------
    anndata.AnnData
        Copy with ``obsm['X_pca']``, ``obsm['X_umap']`` and the selected
        component count in ``uns['reduction']['n_components']``.
    """
    params = params or ReductionParameters()
    validate_dataset(adata, STAGE, require_layer=layer)

    adata = adata.copy()
    run_pca(
        adata,
        layer=layer,
        features=features,
        max_components=params.max_components,
        random_state=random_state,
    )

    variance_ratio = adata.uns["pca"]["variance_ratio"]
    n_dims = select_n_components(
        variance_ratio, threshold=params.variance_threshold, basis=params.variance_basis
    )
    logger.info(f"Optimal number of PCs: {n_dims}")

    run_umap(
        adata,
        n_dims=n_dims,
        n_neighbors=params.umap_n_neighbors,
        min_dist=params.umap_min_dist,
        random_state=random_state,
    )

    adata.uns["reduction"] = {
        "n_components": n_dims,
        "variance_threshold": params.variance_threshold,
        "variance_basis": params.variance_basis,
        "cumulative_variance": cumulative_variance(variance_ratio, params.variance_basis),
        "random_state": random_state,
    }
    return adata
