"""Neighbour graph construction and Leiden clustering."""

import logging
from typing import Optional

import anndata
import numpy as np
import scanpy as sc

from ..dataset import CLUSTER_COL, PCA_KEY, UNASSIGNED_CLUSTER
from ..errors import EmptyDatasetError
from ..utils.deps import require_backends
from ..utils.locks import seeded_primitive_lock
from .parameters import ClusteringParameters

logger = logging.getLogger(__name__)

STAGE = "graph_clustering"


def relabel_by_size(labels: np.ndarray) -> np.ndarray:
    """
    Map arbitrary cluster labels to 0..k-1, largest cluster first.

    Ties in size are broken by the original label's first appearance.
    """
    labels = np.asarray(labels)
    uniques, first_idx, counts = np.unique(labels, return_index=True, return_counts=True)
    order = sorted(range(len(uniques)), key=lambda i: (-counts[i], first_idx[i]))
    mapping = {uniques[i]: new for new, i in enumerate(order)}
    return np.array([mapping[x] for x in labels], dtype=np.int64)


def cluster_spots(
    adata: anndata.AnnData,
    params: Optional[ClusteringParameters] = None,
    n_dims: Optional[int] = None,
    random_state: int = 0,
) -> anndata.AnnData:
    """
    Build a kNN graph on the selected PCs and assign Leiden communities.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with ``obsm['X_pca']``.
    params : ClusteringParameters, optional
        Graph and resolution settings.
    n_dims : int, optional
        Number of PCs to use. Defaults to ``uns['reduction']['n_components']``.
    random_state : int
        Seed for the community detection.

    Returns
    -------
    anndata.AnnData
        Copy with integer ``obs['cluster_id']`` (0 = largest cluster) and the
        graph in ``obsp['connectivities']`` / ``obsp['distances']``.
    """
    params = params or ClusteringParameters()

    if adata.n_obs == 0:
        raise EmptyDatasetError(STAGE, "dataset has no spots")
    if PCA_KEY not in adata.obsm:
        raise ValueError("PCA not found. Run reduce_dimensions first.")

    require_backends(STAGE, "igraph", "leidenalg")

    if n_dims is None:
        n_dims = int(adata.uns.get("reduction", {}).get("n_components", adata.obsm[PCA_KEY].shape[1]))

    adata = adata.copy()
    n_neighbors = int(max(2, min(params.n_neighbors, adata.n_obs - 1)))

    with seeded_primitive_lock:
        logger.info(f"Computing neighborhood graph on {n_dims} PCs (k={n_neighbors})")
        sc.pp.neighbors(
            adata,
            n_neighbors=n_neighbors,
            n_pcs=n_dims,
            use_rep=PCA_KEY,
            random_state=random_state,
        )

        logger.info(f"Leiden clustering at resolution {params.resolution} (seed={random_state})")
        sc.tl.leiden(
            adata,
            resolution=params.resolution,
            flavor="leidenalg",
            n_iterations=params.n_iterations,
            directed=False,
            random_state=random_state,
            key_added="leiden",
        )

    cluster_ids = relabel_by_size(adata.obs["leiden"].astype(str).to_numpy())
    adata.obs[CLUSTER_COL] = cluster_ids
    del adata.obs["leiden"]

    if np.any(adata.obs[CLUSTER_COL].to_numpy() == UNASSIGNED_CLUSTER):
        raise RuntimeError("Community detection left spots unassigned")

    adata.uns["clustering"] = {
        "n_dims": n_dims,
        "n_neighbors": n_neighbors,
        "resolution": params.resolution,
        "flavor": "leidenalg",
        "random_state": random_state,
        "n_clusters": int(len(np.unique(cluster_ids))),
    }

    logger.info(f"Assigned {adata.uns['clustering']['n_clusters']} clusters")

    return adata
