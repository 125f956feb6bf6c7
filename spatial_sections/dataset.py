"""Dataset conventions for spot-level AnnData objects.

A section Dataset is an ``anndata.AnnData`` with spots as observations and
genes as variables. Layers share the spot axis and always keep the full gene
axis; gene selections are stored as lists, never by subsetting the layers.

Nullable per-spot annotations use explicit sentinels so that "not yet
computed" is never confused with a missing value.
"""

import logging
from typing import Optional, Sequence

import anndata
import numpy as np
import pandas as pd
from scipy import sparse

from .errors import EmptyDatasetError, SpotAxisMismatchError

logger = logging.getLogger(__name__)

RAW_LAYER = "raw_counts"
NORMALIZED_LAYER = "normalized"
CORRECTED_LAYER = "corrected"

SPATIAL_KEY = "spatial"
PCA_KEY = "X_pca"
UMAP_KEY = "X_umap"

CLUSTER_COL = "cluster_id"
CELL_TYPE_COL = "predicted_cell_type"
SCORE_COL = "prediction_score"
SECTION_COL = "section"
LIBRARY_COL = "library_id"

VARIABLE_FEATURES_KEY = "variable_features"

UNASSIGNED_CLUSTER = -1
UNASSIGNED_LABEL = "unassigned"


def new_dataset(
    counts,
    spot_ids: Sequence[str],
    gene_ids: Sequence[str],
    coordinates: np.ndarray,
    section: str,
    library_id: Optional[str] = None,
    image_metadata: Optional[dict] = None,
) -> anndata.AnnData:
    """
    Build a Dataset from a spots × genes count matrix.

    Parameters
    ----------
    counts : array-like or sparse matrix
        Raw counts, spots × genes.
    spot_ids : sequence of str
        Spot barcodes, one per row.
    gene_ids : sequence of str
        Gene identifiers, one per column.
    coordinates : np.ndarray
        Spot positions, shape (n_spots, 2).
    section : str
        Section name stored in ``obs['section']``.
    library_id : str, optional
        Image reference key. Defaults to the section name.
    image_metadata : dict, optional
        Scanpy-style image entry stored under ``uns['spatial'][library_id]``.

    Returns
    -------
    anndata.AnnData
        Dataset with ``raw_counts`` populated and unassigned annotations.
    """
    X = sparse.csr_matrix(counts, dtype=np.float32)
    coords = np.asarray(coordinates, dtype=float)
    if coords.shape != (X.shape[0], 2):
        raise SpotAxisMismatchError(
            "load",
            f"coordinates have shape {coords.shape}, expected ({X.shape[0]}, 2)",
        )

    library_id = library_id or section
    obs = pd.DataFrame(index=pd.Index([str(s) for s in spot_ids], name=None))
    var = pd.DataFrame(index=pd.Index([str(g) for g in gene_ids], name=None))

    adata = anndata.AnnData(X=X, obs=obs, var=var)
    adata.layers[RAW_LAYER] = X.copy()
    adata.obsm[SPATIAL_KEY] = coords
    adata.obs[SECTION_COL] = pd.Categorical([section] * adata.n_obs)
    adata.obs[LIBRARY_COL] = pd.Categorical([library_id] * adata.n_obs)
    adata.uns[SPATIAL_KEY] = {library_id: image_metadata or {}}

    ensure_unassigned_fields(adata)
    return adata


def ensure_unassigned_fields(adata: anndata.AnnData) -> anndata.AnnData:
    """Add sentinel-filled cluster and cell-type columns if they are missing."""
    if CLUSTER_COL not in adata.obs.columns:
        adata.obs[CLUSTER_COL] = np.full(adata.n_obs, UNASSIGNED_CLUSTER, dtype=np.int64)
    if CELL_TYPE_COL not in adata.obs.columns:
        adata.obs[CELL_TYPE_COL] = np.array([UNASSIGNED_LABEL] * adata.n_obs, dtype=object)
    return adata


def validate_dataset(adata: anndata.AnnData, stage: str, require_layer: str = RAW_LAYER) -> None:
    """
    Check the spot-axis invariant and basic input contract.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset to check.
    stage : str
        Stage name used in raised errors.
    require_layer : str
        Layer that must be present.

    Raises
    ------
    EmptyDatasetError
        If the dataset has no spots.
    SpotAxisMismatchError
        If any structure disagrees with the spot axis.
    """
    if adata.n_obs == 0:
        raise EmptyDatasetError(stage, "dataset has no spots")

    if not adata.obs_names.is_unique:
        raise SpotAxisMismatchError(stage, "spot ids are not unique")

    if require_layer is not None and require_layer not in adata.layers:
        raise SpotAxisMismatchError(stage, f"layer '{require_layer}' is missing")

    for name, layer in adata.layers.items():
        if layer.shape != (adata.n_obs, adata.n_vars):
            raise SpotAxisMismatchError(
                stage, f"layer '{name}' has shape {layer.shape}, expected {adata.shape}"
            )

    if SPATIAL_KEY not in adata.obsm:
        raise SpotAxisMismatchError(stage, f"coordinates missing from obsm['{SPATIAL_KEY}']")
    if adata.obsm[SPATIAL_KEY].shape[1] != 2:
        raise SpotAxisMismatchError(stage, "coordinates must have exactly 2 columns")

    for key in adata.obsm.keys():
        if adata.obsm[key].shape[0] != adata.n_obs:
            raise SpotAxisMismatchError(stage, f"embedding '{key}' does not match spot axis")


def layer_as_dense(adata: anndata.AnnData, layer: str, genes: Optional[Sequence[str]] = None) -> np.ndarray:
    """Return a dense float copy of ``layer``, optionally restricted to ``genes``."""
    if layer not in adata.layers:
        raise KeyError(f"Layer '{layer}' not found in adata.layers")
    data = adata.layers[layer]
    if genes is not None:
        idx = adata.var_names.get_indexer(list(genes))
        if np.any(idx < 0):
            missing = [g for g, i in zip(genes, idx) if i < 0]
            raise KeyError(f"Genes not found in dataset: {missing[:5]}")
        data = data[:, idx]
    if sparse.issparse(data):
        data = data.toarray()
    return np.asarray(data, dtype=np.float64)


def get_variable_features(adata: anndata.AnnData) -> list:
    """Return the ordered variable-feature list, or an empty list."""
    return list(adata.uns.get(VARIABLE_FEATURES_KEY, []))


def strip_derived(adata: anndata.AnnData) -> anndata.AnnData:
    """Drop embeddings and graphs so a Dataset can be re-reduced from scratch."""
    for key in [k for k in adata.obsm.keys() if k != SPATIAL_KEY]:
        del adata.obsm[key]
    for key in list(adata.obsp.keys()):
        del adata.obsp[key]
    for key in ("pca", "neighbors", "umap", "leiden", "reduction", "clustering"):
        adata.uns.pop(key, None)
    return adata
