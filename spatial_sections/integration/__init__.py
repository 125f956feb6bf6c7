"""Cross-section anchor finding, batch correction and merging."""

from .anchors import (
    AnchorSet,
    anchor_weights,
    cca_embedding,
    filter_anchors,
    find_integration_anchors,
    find_mutual_nearest_neighbors,
)
from .correction import anchor_weight_matrix, correct_expression
from .features import select_integration_features
from .merge import integrate_sections, merge_sections, merge_unintegrated, sections_in

__all__ = [
    "AnchorSet",
    "anchor_weights",
    "cca_embedding",
    "filter_anchors",
    "find_integration_anchors",
    "find_mutual_nearest_neighbors",
    "anchor_weight_matrix",
    "correct_expression",
    "select_integration_features",
    "integrate_sections",
    "merge_sections",
    "merge_unintegrated",
    "sections_in",
]
