"""Quality control utilities."""

from .filters import apply_qc_filters, build_filter_mask, compute_qc_metrics, qc_bounds
from .summaries import (
    compare_pre_post_filtering,
    compute_filter_report,
    compute_filter_stats,
    compute_qc_summary,
)

__all__ = [
    "apply_qc_filters",
    "build_filter_mask",
    "compute_qc_metrics",
    "qc_bounds",
    "compare_pre_post_filtering",
    "compute_filter_report",
    "compute_filter_stats",
    "compute_qc_summary",
]
