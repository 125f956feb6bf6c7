"""Merging sections and the integration stage."""

import logging
from typing import Dict, Mapping, Optional, Tuple

import anndata
import numpy as np

from ..dataset import (
    CELL_TYPE_COL,
    CLUSTER_COL,
    CORRECTED_LAYER,
    NORMALIZED_LAYER,
    SECTION_COL,
    SPATIAL_KEY,
    UNASSIGNED_CLUSTER,
    UNASSIGNED_LABEL,
    VARIABLE_FEATURES_KEY,
    strip_derived,
    validate_dataset,
)
from ..modeling.clustering import cluster_spots
from ..modeling.parameters import ClusteringParameters, IntegrationParameters, ReductionParameters
from ..modeling.reduction import reduce_dimensions
from .anchors import AnchorSet, find_integration_anchors
from .correction import correct_expression
from .features import select_integration_features

logger = logging.getLogger(__name__)

STAGE = "integration"


def merge_sections(sections: Mapping[str, anndata.AnnData]) -> anndata.AnnData:
    """
    Concatenate section Datasets along the spot axis.

    Embeddings and graphs are dropped; layers are kept over the union of
    genes (missing genes filled with 0). Spot ids are suffixed with the
    section name only when they collide across sections; the original id is
    kept in ``obs['source_spot_id']``. Per-section clusters move to
    ``obs['section_cluster_id']``.

    Parameters
    ----------
    sections : mapping of str to AnnData
        Section name to Dataset, in merge order.

    Returns
    -------
    anndata.AnnData
        Merged Dataset tagged by ``obs['section']``.
    """
    if len(sections) < 2:
        raise ValueError("At least two sections are required to merge")

    parts = {}
    seen = set()
    collide = False
    for name, adata in sections.items():
        part = strip_derived(adata.copy())
        part.obs["source_spot_id"] = part.obs_names.astype(str)
        if CLUSTER_COL in part.obs.columns:
            part.obs["section_cluster_id"] = part.obs[CLUSTER_COL].to_numpy()
        part.obs = part.obs.drop(columns=[SECTION_COL], errors="ignore")
        collide = collide or bool(seen & set(part.obs_names))
        seen |= set(part.obs_names)
        parts[name] = part

    merged = anndata.concat(
        parts,
        join="outer",
        label=SECTION_COL,
        index_unique="-" if collide else None,
        fill_value=0,
    )
    merged.obs[SECTION_COL] = merged.obs[SECTION_COL].astype("category")
    merged.obs[CLUSTER_COL] = np.full(merged.n_obs, UNASSIGNED_CLUSTER, dtype=np.int64)
    merged.obs[CELL_TYPE_COL] = np.array([UNASSIGNED_LABEL] * merged.n_obs, dtype=object)

    merged.uns[SPATIAL_KEY] = {}
    merged.uns["sections"] = {}
    for name, adata in sections.items():
        merged.uns[SPATIAL_KEY].update(adata.uns.get(SPATIAL_KEY, {}))
        merged.uns["sections"][name] = {
            "n_spots": int(adata.n_obs),
            "qc": adata.uns.get("qc", {}),
        }

    if collide:
        logger.info("Spot ids collide across sections; suffixed with section name")

    logger.info(
        f"Merged {len(sections)} sections: {merged.n_obs} spots, {merged.n_vars} genes"
    )
    return merged


def integrate_sections(
    adata_a: anndata.AnnData,
    adata_b: anndata.AnnData,
    params: Optional[IntegrationParameters] = None,
    reduction_params: Optional[ReductionParameters] = None,
    clustering_params: Optional[ClusteringParameters] = None,
    random_state: int = 0,
) -> Tuple[anndata.AnnData, AnchorSet]:
    """
    Anchor-based integration of two normalized sections.

    Section B is corrected into section A's frame on the shared features;
    the merged Dataset carries both sections' spots with a ``corrected``
    layer, and is re-reduced and re-clustered on it.

    Parameters
    ----------
    adata_a, adata_b : anndata.AnnData
        Normalized section Datasets; A is the reference frame.
    params : IntegrationParameters, optional
    reduction_params : ReductionParameters, optional
    clustering_params : ClusteringParameters, optional
    random_state : int
        Seed for every stochastic step.

    Returns
    -------
    tuple
        (merged Dataset, AnchorSet)
    """
    params = params or IntegrationParameters()
    validate_dataset(adata_a, STAGE, require_layer=NORMALIZED_LAYER)
    validate_dataset(adata_b, STAGE, require_layer=NORMALIZED_LAYER)

    name_a, name_b = _section_names(adata_a, adata_b)

    features = select_integration_features([adata_a, adata_b], n_features=params.n_features)
    anchors = find_integration_anchors(
        adata_a, adata_b, features, params=params, random_state=random_state
    )
    corrected_b = correct_expression(adata_a, adata_b, anchors, features, params=params)

    part_a = adata_a.copy()
    part_a.layers[CORRECTED_LAYER] = np.asarray(
        part_a.layers[NORMALIZED_LAYER], dtype=np.float32
    ).copy()
    part_b = adata_b.copy()
    part_b.layers[CORRECTED_LAYER] = corrected_b.astype(np.float32)

    merged = merge_sections({name_a: part_a, name_b: part_b})
    merged.uns[VARIABLE_FEATURES_KEY] = features
    merged.var["variable_feature"] = merged.var_names.isin(features)
    merged.uns["integration"] = {
        "reference_section": name_a,
        "n_features": len(features),
        "n_anchors": len(anchors),
        "n_dims": int(anchors.space_a.shape[1]),
        "k_anchor": params.k_anchor,
        "k_filter": params.k_filter,
        "k_weight": params.k_weight,
    }

    merged = reduce_dimensions(
        merged,
        params=reduction_params,
        layer=CORRECTED_LAYER,
        features=features,
        random_state=random_state,
    )
    merged = cluster_spots(merged, params=clustering_params, random_state=random_state)

    logger.info(
        f"Integration complete: {merged.n_obs} spots, "
        f"{merged.uns['clustering']['n_clusters']} clusters"
    )
    return merged, anchors


def merge_unintegrated(
    adata_a: anndata.AnnData,
    adata_b: anndata.AnnData,
    params: Optional[IntegrationParameters] = None,
    reduction_params: Optional[ReductionParameters] = None,
    clustering_params: Optional[ClusteringParameters] = None,
    random_state: int = 0,
) -> anndata.AnnData:
    """
    Plain concatenation of two sections, reduced and clustered on the
    per-section normalized values. Baseline for judging the integration.
    """
    params = params or IntegrationParameters()
    features = select_integration_features([adata_a, adata_b], n_features=params.n_features)

    name_a, name_b = _section_names(adata_a, adata_b)
    merged = merge_sections({name_a: adata_a, name_b: adata_b})
    merged.uns[VARIABLE_FEATURES_KEY] = features
    merged = reduce_dimensions(
        merged,
        params=reduction_params,
        layer=NORMALIZED_LAYER,
        features=features,
        random_state=random_state,
    )
    merged = cluster_spots(merged, params=clustering_params, random_state=random_state)
    merged.uns["integration"] = {"method": "none", "n_features": len(features)}
    return merged


def sections_in(adata: anndata.AnnData) -> Dict[str, int]:
    """Spot count per section tag."""
    counts = adata.obs[SECTION_COL].value_counts(sort=False)
    return {str(k): int(v) for k, v in counts.items()}


def _section_names(adata_a: anndata.AnnData, adata_b: anndata.AnnData) -> Tuple[str, str]:
    names = []
    for adata, default in ((adata_a, "A"), (adata_b, "B")):
        if SECTION_COL in adata.obs.columns and adata.n_obs:
            names.append(str(adata.obs[SECTION_COL].iloc[0]))
        else:
            names.append(default)
    if names[0] == names[1]:
        names[1] = f"{names[1]}.2"
    return names[0], names[1]
