"""Spatially variable genes by Moran's I on the physical neighbor graph."""

import logging
from typing import Iterable, List, Optional

import anndata
import numpy as np
import pandas as pd
from scipy import sparse

from ..cluster_interpretation.markers import MarkerSet
from ..dataset import NORMALIZED_LAYER, get_variable_features, layer_as_dense, validate_dataset
from ..errors import InsufficientSpotsError
from ..modeling.parameters import SpatialGenesParameters
from .neighbors import CONNECTIVITIES_KEY, compute_neighbors

logger = logging.getLogger(__name__)

STAGE = "spatial_variable_genes"


def morans_i(graph: sparse.spmatrix, values: np.ndarray) -> np.ndarray:
    """Compute Moran's I for one or many variables.

    I = (n/W) * (sum_{ij} w_{ij} * z_i * z_j) / (sum_i z_i^2)

    Parameters
    ----------
    graph : sparse matrix
        n × n spatial weights.
    values : np.ndarray
        Length-n vector or n × g matrix (one column per gene).

    Returns
    -------
    np.ndarray
        One statistic per column; NaN where a column is constant.
    """
    values = np.asarray(values, dtype=np.float64)
    squeeze = values.ndim == 1
    if squeeze:
        values = values[:, None]

    n = values.shape[0]
    W = graph.sum()
    if n == 0 or W == 0:
        result = np.full(values.shape[1], np.nan)
        return result[0] if squeeze else result

    z = values - values.mean(axis=0)
    numerator = np.einsum("ij,ij->j", z, np.asarray(graph @ z))
    denominator = np.sum(z**2, axis=0)

    with np.errstate(divide="ignore", invalid="ignore"):
        result = np.where(denominator > 0, (n / W) * numerator / denominator, np.nan)

    return result[0] if squeeze else result


def rank_spatial_genes(scores: pd.Series) -> pd.DataFrame:
    """
    Order genes by |Moran's I| descending with gene id ascending as tie-break.

    Genes with an undefined statistic go last.
    """
    frame = pd.DataFrame({"gene": scores.index.astype(str), "morans_i": scores.to_numpy()})
    frame["magnitude"] = frame["morans_i"].abs().fillna(-np.inf)
    frame = frame.sort_values(["magnitude", "gene"], ascending=[False, True], kind="mergesort")
    frame["rank"] = np.arange(1, len(frame) + 1)
    return frame.drop(columns="magnitude").reset_index(drop=True)


def find_spatial_genes(
    adata: anndata.AnnData,
    params: Optional[SpatialGenesParameters] = None,
    genes: Optional[Iterable[str]] = None,
    layer: str = NORMALIZED_LAYER,
) -> pd.DataFrame:
    """
    Rank candidate genes by spatial autocorrelation.

    Parameters
    ----------
    adata : anndata.AnnData
        Normalized Dataset with coordinates in ``obsm['spatial']``.
    params : SpatialGenesParameters, optional
        Neighbour count and number of genes returned.
    genes : iterable of str, optional
        Candidate genes; defaults to the variable features.
    layer : str
        Expression layer the statistic is computed on.

    Returns
    -------
    pd.DataFrame
        Top ``n_top_genes`` rows with columns gene, morans_i, rank.

    Raises
    ------
    InsufficientSpotsError
        If there are not more spots than the requested neighbour count.
    """
    params = params or SpatialGenesParameters()
    validate_dataset(adata, STAGE, require_layer=layer)

    if adata.n_obs <= params.n_neighbors:
        raise InsufficientSpotsError(
            STAGE,
            f"{adata.n_obs} spots cannot supply {params.n_neighbors} spatial neighbours each",
        )

    candidates = list(genes) if genes is not None else get_variable_features(adata)
    if not candidates:
        raise ValueError("No candidate genes; normalize first or pass genes explicitly")

    graph_holder = anndata.AnnData(obs=adata.obs[[]], obsm={"spatial": adata.obsm["spatial"]})
    compute_neighbors(graph_holder, method="knn", n_neighbors=params.n_neighbors)
    graph = graph_holder.obsp[CONNECTIVITIES_KEY]

    values = layer_as_dense(adata, layer, genes=candidates)
    scores = pd.Series(morans_i(graph, values), index=candidates)

    ranked = rank_spatial_genes(scores)
    top = ranked.head(params.n_top_genes).reset_index(drop=True)

    logger.info(
        f"Top spatial genes ({len(candidates)} candidates): "
        + ", ".join(f"{g} ({i:.3f})" for g, i in zip(top["gene"], top["morans_i"]))
    )

    return top


def markers_for_spatial_genes(markers: MarkerSet, spatial_genes: Iterable[str]) -> pd.DataFrame:
    """
    Cluster markers that are also spatially variable genes.

    Parameters
    ----------
    markers : MarkerSet
        Per-cluster markers of the same Dataset.
    spatial_genes : iterable of str
        Genes returned by :func:`find_spatial_genes`.

    Returns
    -------
    pd.DataFrame
        Marker rows restricted to the spatial genes, in marker rank order.
    """
    spatial_genes: List[str] = list(spatial_genes)
    subset = markers.restrict_to_genes(spatial_genes).table
    logger.info(f"{subset['gene'].nunique()} of {len(spatial_genes)} spatial genes are cluster markers")
    return subset
