"""Reference label transfer and marker curation."""

from .curation import curate_marker_genes, deconvolution_marker_genes, reference_marker_genes
from .label_transfer import PREDICTION_SCORES_KEY, transfer_genes, transfer_labels

__all__ = [
    "curate_marker_genes",
    "deconvolution_marker_genes",
    "reference_marker_genes",
    "PREDICTION_SCORES_KEY",
    "transfer_genes",
    "transfer_labels",
]
