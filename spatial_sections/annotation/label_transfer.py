"""Reference-based label transfer onto spots."""

import logging
from typing import List, Optional

import anndata
import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.neighbors import NearestNeighbors
from sklearn.preprocessing import normalize

from ..dataset import (
    CELL_TYPE_COL,
    NORMALIZED_LAYER,
    RAW_LAYER,
    SCORE_COL,
    UNASSIGNED_LABEL,
    layer_as_dense,
    validate_dataset,
)
from ..errors import EmptyDatasetError, NoAnchorsFoundError
from ..integration.anchors import AnchorSet, anchor_weights, find_mutual_nearest_neighbors
from ..integration.correction import anchor_weight_matrix
from ..modeling.normalization import compute_pearson_residuals, rank_variable_features
from ..modeling.parameters import LabelTransferParameters, NormalizationParameters

logger = logging.getLogger(__name__)

STAGE = "label_transfer"

PREDICTION_SCORES_KEY = "prediction_scores"


def transfer_genes(residual_variances: pd.Series, query_genes, n_top_genes: int) -> List[str]:
    """
    Reference variable features that are also measured in the query.

    Reference genes are ranked by Pearson residual variance; the top
    ``n_top_genes`` are kept, in rank order, if the query measures them.
    """
    ranked = rank_variable_features(residual_variances, int(min(n_top_genes, len(residual_variances))))
    query_genes = set(query_genes)
    return [g for g in ranked if g in query_genes]


def transfer_labels(
    query: anndata.AnnData,
    reference: anndata.AnnData,
    params: Optional[LabelTransferParameters] = None,
    normalization: Optional[NormalizationParameters] = None,
    query_layer: str = NORMALIZED_LAYER,
    random_state: int = 0,
) -> anndata.AnnData:
    """
    Predict a cell-type label per spot from an annotated reference.

    The reference is normalized (on a copy), projected into PCA space on the
    shared genes, and the query is projected into the same space. Mutual
    nearest neighbours between query spots and reference cells form anchors;
    each spot takes the label with the highest anchor-weighted vote over its
    ``k_weight`` nearest anchors (ties go to the label that sorts first).

    Parameters
    ----------
    query : anndata.AnnData
        Normalized (typically merged) Dataset.
    reference : anndata.AnnData
        Reference atlas with counts in ``layers['raw_counts']`` and labels in
        ``obs[params.label_key]``. Not modified.
    params : LabelTransferParameters, optional
        Anchor and weighting settings.
    normalization : NormalizationParameters, optional
        Settings for normalizing the reference.
    query_layer : str
        Query expression layer.
    random_state : int
        Seed for the PCA solver.

    Returns
    -------
    anndata.AnnData
        Copy of ``query`` with ``obs['predicted_cell_type']``,
        ``obs['prediction_score']`` and per-label scores in
        ``obsm['prediction_scores']``. Spots without a qualifying anchor keep
        the ``"unassigned"`` label and a NaN score; they are listed in
        ``uns['label_transfer']['unassigned_spots']``.
    """
    params = params or LabelTransferParameters()
    validate_dataset(query, STAGE, require_layer=query_layer)

    if reference.n_obs == 0:
        raise EmptyDatasetError(STAGE, "reference atlas has no cells")
    if params.label_key not in reference.obs.columns:
        raise KeyError(f"Label column '{params.label_key}' not found in reference.obs")
    if RAW_LAYER not in reference.layers:
        raise KeyError(f"Reference has no '{RAW_LAYER}' layer")

    normalization = normalization or NormalizationParameters()
    residuals, residual_variances = compute_pearson_residuals(reference, normalization)
    genes = transfer_genes(residual_variances, query.var_names, normalization.n_top_genes)
    if not genes:
        raise NoAnchorsFoundError(STAGE, "reference and query share no variable features")

    logger.info(f"Transferring '{params.label_key}' labels using {len(genes)} shared genes")

    ref_data = residuals[:, reference.var_names.get_indexer(genes)]
    query_data = layer_as_dense(query, query_layer, genes=genes)

    n_dims = int(min(params.n_dims, len(genes), reference.n_obs - 1))
    if n_dims < 1:
        raise NoAnchorsFoundError(STAGE, "too few reference cells or genes for a projection")

    pca = PCA(n_components=n_dims, svd_solver="full", random_state=random_state)
    ref_space = normalize(pca.fit_transform(ref_data), norm="l2")
    query_space = normalize(pca.transform(query_data), norm="l2")

    index_q, index_r, dist = find_mutual_nearest_neighbors(query_space, ref_space, params.k_anchor)
    anchors = AnchorSet(
        spots_a=query.obs_names.to_numpy()[index_q],
        spots_b=reference.obs_names.to_numpy()[index_r],
        index_a=index_q,
        index_b=index_r,
        weights=anchor_weights(dist),
        space_a=query_space,
        space_b=ref_space,
    )
    if len(anchors) == 0:
        raise NoAnchorsFoundError(
            STAGE, f"no query-reference mutual nearest neighbours within k_anchor={params.k_anchor}"
        )
    logger.info(f"Found {len(anchors)} label-transfer anchors")

    anchor_positions = query_space[anchors.index_a]
    weights = anchor_weight_matrix(
        query_space,
        anchor_positions,
        anchors.weights,
        k_weight=params.k_weight,
        sd_weight=params.sd_weight,
    )

    labels = reference.obs[params.label_key].astype(str).to_numpy()[anchors.index_b]
    classes = np.array(sorted(set(labels)))
    one_hot = (labels[:, None] == classes[None, :]).astype(np.float64)
    scores = np.asarray(weights @ one_hot)

    predicted = classes[np.argmax(scores, axis=1)].astype(object)
    best_score = scores.max(axis=1)

    qualifying = np.ones(query.n_obs, dtype=bool)
    if params.max_anchor_distance is not None:
        nearest, _ = NearestNeighbors(n_neighbors=1).fit(anchor_positions).kneighbors(query_space)
        qualifying = nearest[:, 0] <= params.max_anchor_distance

    predicted[~qualifying] = UNASSIGNED_LABEL
    best_score = np.where(qualifying, best_score, np.nan)

    result = query.copy()
    result.obs[CELL_TYPE_COL] = predicted
    result.obs[SCORE_COL] = best_score
    result.obsm[PREDICTION_SCORES_KEY] = pd.DataFrame(scores, index=result.obs_names, columns=classes)

    unassigned = result.obs_names[~qualifying].tolist()
    if unassigned:
        logger.warning(f"{len(unassigned)} spots have no qualifying anchor and remain unassigned")

    result.uns["label_transfer"] = {
        "label_key": params.label_key,
        "n_genes": len(genes),
        "n_dims": n_dims,
        "n_anchors": len(anchors),
        "n_unassigned": len(unassigned),
        "unassigned_spots": unassigned,
    }

    counts = pd.Series(predicted).value_counts()
    logger.info(
        "Predicted cell types: " + ", ".join(f"{k} ({v})" for k, v in counts.items())
    )

    return result
