"""Differential expression and cluster summaries."""

from .markers import MARKER_COLUMNS, MarkerSet, compute_group_markers, compute_markers
from .summaries import compute_cluster_summary
from .utils import prepare_expression_data, scale_to_target_sum

__all__ = [
    "MARKER_COLUMNS",
    "MarkerSet",
    "compute_group_markers",
    "compute_markers",
    "compute_cluster_summary",
    "prepare_expression_data",
    "scale_to_target_sum",
]
