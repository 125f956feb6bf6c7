"""Anchor finding between two expression spaces."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import anndata
import numpy as np
import pandas as pd
from sklearn.neighbors import NearestNeighbors
from sklearn.preprocessing import normalize, scale
from sklearn.utils.extmath import randomized_svd

from ..dataset import NORMALIZED_LAYER, layer_as_dense
from ..errors import NoAnchorsFoundError
from ..modeling.parameters import IntegrationParameters

logger = logging.getLogger(__name__)

STAGE = "integration"


@dataclass
class AnchorSet:
    """Correspondences between spots of dataset A and spots of dataset B.

    Positional indices refer to the datasets the anchors were computed on.
    ``space_a`` / ``space_b`` hold the shared reduced coordinates the anchors
    were found in, for downstream weighting.
    """

    spots_a: np.ndarray
    spots_b: np.ndarray
    index_a: np.ndarray
    index_b: np.ndarray
    weights: np.ndarray
    space_a: Optional[np.ndarray] = field(default=None, repr=False)
    space_b: Optional[np.ndarray] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.weights)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"spot_a": self.spots_a, "spot_b": self.spots_b, "weight": self.weights}
        )

    def subset(self, mask: np.ndarray) -> "AnchorSet":
        """Keep only the anchors selected by a boolean mask."""
        return AnchorSet(
            spots_a=self.spots_a[mask],
            spots_b=self.spots_b[mask],
            index_a=self.index_a[mask],
            index_b=self.index_b[mask],
            weights=self.weights[mask],
            space_a=self.space_a,
            space_b=self.space_b,
        )


def cca_embedding(
    data_a: np.ndarray,
    data_b: np.ndarray,
    n_dims: int,
    random_state: int = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Canonical correlation vectors for two spots × features matrices.

    Each matrix is standardized per feature; the left and right singular
    vectors of ``A @ B.T`` give the coordinates of A's and B's spots in the
    shared space. Rows are L2-normalized.

    Returns
    -------
    tuple of np.ndarray
        (n_a × d, n_b × d) embeddings with ``d = min(n_dims, n_a - 1, n_b - 1)``.
    """
    n_dims = int(min(n_dims, data_a.shape[0] - 1, data_b.shape[0] - 1))
    if n_dims < 1:
        raise NoAnchorsFoundError(STAGE, "too few spots to compute a shared space")

    scaled_a = scale(data_a, axis=0)
    scaled_b = scale(data_b, axis=0)
    cross = scaled_a @ scaled_b.T

    u, _, vt = randomized_svd(cross, n_components=n_dims, random_state=random_state)
    return normalize(u, norm="l2"), normalize(vt.T, norm="l2")


def find_mutual_nearest_neighbors(
    space_a: np.ndarray,
    space_b: np.ndarray,
    k: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Pairs (i, j) where j is among i's k nearest B spots and vice versa.

    Returns
    -------
    tuple of np.ndarray
        (index_a, index_b, distance) sorted by index_a then index_b.
    """
    k_ab = int(min(k, space_b.shape[0]))
    k_ba = int(min(k, space_a.shape[0]))

    nn_b = NearestNeighbors(n_neighbors=k_ab).fit(space_b)
    dist_ab, idx_ab = nn_b.kneighbors(space_a)
    nn_a = NearestNeighbors(n_neighbors=k_ba).fit(space_a)
    _, idx_ba = nn_a.kneighbors(space_b)

    b_neighbors = [set(row) for row in idx_ba]
    pairs = []
    for i in range(space_a.shape[0]):
        for d, j in zip(dist_ab[i], idx_ab[i]):
            if i in b_neighbors[j]:
                pairs.append((i, int(j), float(d)))

    if not pairs:
        empty = np.array([], dtype=np.int64)
        return empty, empty, np.array([], dtype=np.float64)

    pairs.sort(key=lambda p: (p[0], p[1]))
    index_a, index_b, dist = zip(*pairs)
    return np.array(index_a), np.array(index_b), np.array(dist)


def anchor_weights(distances: np.ndarray) -> np.ndarray:
    """Cosine similarity of L2-normalized endpoints, floored at 0."""
    return np.clip(1.0 - np.asarray(distances) ** 2 / 2.0, 0.0, 1.0)


def filter_anchors(
    anchors: AnchorSet,
    features_a: np.ndarray,
    features_b: np.ndarray,
    k_filter: Optional[int],
) -> AnchorSet:
    """
    Keep anchors whose A endpoint is among the ``k_filter`` nearest A spots of
    their B endpoint in the (L2-normalized) shared-feature space.
    """
    if k_filter is None or k_filter >= features_a.shape[0] or len(anchors) == 0:
        return anchors

    feat_a = normalize(features_a, norm="l2")
    feat_b = normalize(features_b, norm="l2")
    nn = NearestNeighbors(n_neighbors=k_filter).fit(feat_a)
    _, idx = nn.kneighbors(feat_b[anchors.index_b])

    keep = np.array([a in row for a, row in zip(anchors.index_a, idx)], dtype=bool)
    logger.info(f"Anchor filtering (k_filter={k_filter}) retained {int(keep.sum())} of {len(anchors)}")
    return anchors.subset(keep)


def find_integration_anchors(
    adata_a: anndata.AnnData,
    adata_b: anndata.AnnData,
    features: Sequence[str],
    params: Optional[IntegrationParameters] = None,
    layer: str = NORMALIZED_LAYER,
    random_state: int = 0,
) -> AnchorSet:
    """
    Find mutual-nearest-neighbour anchors between two sections.

    Parameters
    ----------
    adata_a, adata_b : anndata.AnnData
        Normalized Datasets.
    features : sequence of str
        Shared features, measured in both.
    params : IntegrationParameters, optional
        Shared-space size, ``k_anchor`` and ``k_filter``.
    layer : str
        Expression layer.
    random_state : int
        Seed for the randomized SVD.

    Returns
    -------
    AnchorSet

    Raises
    ------
    NoAnchorsFoundError
        If no features are given or no mutual pairs survive.
    """
    params = params or IntegrationParameters()
    features = list(features)
    if not features:
        raise NoAnchorsFoundError(STAGE, "shared feature set is empty")

    data_a = layer_as_dense(adata_a, layer, genes=features)
    data_b = layer_as_dense(adata_b, layer, genes=features)

    logger.info(
        f"Computing shared space ({params.n_dims} dims) for {adata_a.n_obs} x {adata_b.n_obs} spots"
    )
    space_a, space_b = cca_embedding(data_a, data_b, params.n_dims, random_state=random_state)

    index_a, index_b, dist = find_mutual_nearest_neighbors(space_a, space_b, params.k_anchor)
    anchors = AnchorSet(
        spots_a=adata_a.obs_names.to_numpy()[index_a],
        spots_b=adata_b.obs_names.to_numpy()[index_b],
        index_a=index_a,
        index_b=index_b,
        weights=anchor_weights(dist),
        space_a=space_a,
        space_b=space_b,
    )
    logger.info(f"Found {len(anchors)} mutual-nearest-neighbour anchors (k_anchor={params.k_anchor})")

    anchors = filter_anchors(anchors, data_a, data_b, params.k_filter)

    if len(anchors) == 0:
        raise NoAnchorsFoundError(
            STAGE, f"no mutual nearest neighbours within k_anchor={params.k_anchor}"
        )

    return anchors
