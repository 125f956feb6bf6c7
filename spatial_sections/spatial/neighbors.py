"""Spatial neighbor graph construction on physical coordinates."""

import logging
from typing import Literal, Optional

import anndata
import numpy as np
from scipy.sparse import csr_matrix
from sklearn.neighbors import NearestNeighbors, radius_neighbors_graph

from ..dataset import SPATIAL_KEY

logger = logging.getLogger(__name__)

CONNECTIVITIES_KEY = "spatial_connectivities"
DISTANCES_KEY = "spatial_distances"


def knn_graph(coords: np.ndarray, n_neighbors: int):
    """
    Symmetric kNN connectivity and distance matrices, self excluded.

    Parameters
    ----------
    coords : np.ndarray
        n × 2 spot coordinates.
    n_neighbors : int
        Neighbours per spot; must be smaller than the number of spots.

    Returns
    -------
    tuple of scipy.sparse.csr_matrix
        (connectivities, distances)
    """
    n_spots = coords.shape[0]
    nbrs = NearestNeighbors(n_neighbors=n_neighbors + 1, algorithm="auto")
    nbrs.fit(coords)
    distances, indices = nbrs.kneighbors(coords)

    # Drop the self match in column 0
    distances = distances[:, 1:]
    indices = indices[:, 1:]

    row_indices = np.repeat(np.arange(n_spots), n_neighbors)
    col_indices = indices.flatten()

    connectivities = csr_matrix(
        (np.ones(len(row_indices)), (row_indices, col_indices)), shape=(n_spots, n_spots)
    )
    distances_sparse = csr_matrix(
        (distances.flatten(), (row_indices, col_indices)), shape=(n_spots, n_spots)
    )

    connectivities = connectivities.maximum(connectivities.T)  # Make symmetric
    distances_sparse = distances_sparse.maximum(distances_sparse.T)
    return connectivities, distances_sparse


def compute_neighbors(
    adata: anndata.AnnData,
    spatial_key: str = SPATIAL_KEY,
    method: Literal["radius", "knn"] = "knn",
    radius: Optional[float] = None,
    n_neighbors: Optional[int] = 6,
) -> anndata.AnnData:
    """
    Compute spatial neighbors and add to adata.obsp and adata.uns.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with spatial coordinates in obsm[spatial_key].
    spatial_key : str
        Key in adata.obsm containing spatial coordinates.
    method : {'radius', 'knn'}
        Method for computing neighbors.
    radius : float, optional
        Radius for radius-based neighbors (required if method='radius').
    n_neighbors : int, optional
        Number of neighbors for KNN (required if method='knn').

    Returns
    -------
    anndata.AnnData
        The same object with the graph in obsp['spatial_connectivities'] and
        obsp['spatial_distances'], and metadata in uns['spatial_neighbors'].
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")

    coords = np.asarray(adata.obsm[spatial_key], dtype=np.float64)

    if method == "radius":
        if radius is None:
            raise ValueError("Must specify 'radius' when method='radius'")

        logger.info(f"Computing radius-based neighbors with radius={radius}")
        connectivities = radius_neighbors_graph(
            coords, radius=radius, mode="connectivity", include_self=False
        )
        distances = radius_neighbors_graph(
            coords, radius=radius, mode="distance", include_self=False
        )

    elif method == "knn":
        if n_neighbors is None:
            raise ValueError("Must specify 'n_neighbors' when method='knn'")
        if n_neighbors >= adata.n_obs:
            raise ValueError(
                f"n_neighbors={n_neighbors} must be smaller than the number of spots ({adata.n_obs})"
            )

        logger.info(f"Computing KNN with n_neighbors={n_neighbors}")
        connectivities, distances = knn_graph(coords, n_neighbors)

    else:
        raise ValueError(f"Unknown method: {method}")

    adata.obsp[CONNECTIVITIES_KEY] = connectivities
    adata.obsp[DISTANCES_KEY] = distances

    adata.uns["spatial_neighbors"] = {
        "connectivities_key": CONNECTIVITIES_KEY,
        "distances_key": DISTANCES_KEY,
        "params": {
            "method": method,
            "radius": radius,
            "n_neighbors": n_neighbors,
            "spatial_key": spatial_key,
        },
    }

    n_edges = connectivities.nnz // 2  # Divide by 2 for undirected graph
    logger.info(
        f"Spatial neighbor graph constructed: {n_edges} edges, "
        f"avg {connectivities.nnz / adata.n_obs:.1f} neighbors per spot"
    )

    return adata
