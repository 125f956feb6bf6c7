"""Normalization, dimensionality reduction and clustering stages."""

from .clustering import cluster_spots
from .normalization import compute_pearson_residuals, normalize_dataset, rank_variable_features
from .parameters import (
    ClusteringParameters,
    DeconvolutionParameters,
    IntegrationParameters,
    LabelTransferParameters,
    MarkerParameters,
    NormalizationParameters,
    PipelineParameters,
    QCParameters,
    ReductionParameters,
    SpatialGenesParameters,
    load_parameters,
    save_parameters,
    validate_parameters,
)
from .reduction import cumulative_variance, reduce_dimensions, select_n_components

__all__ = [
    "cluster_spots",
    "compute_pearson_residuals",
    "normalize_dataset",
    "rank_variable_features",
    "reduce_dimensions",
    "cumulative_variance",
    "select_n_components",
    "PipelineParameters",
    "QCParameters",
    "NormalizationParameters",
    "ReductionParameters",
    "ClusteringParameters",
    "MarkerParameters",
    "SpatialGenesParameters",
    "IntegrationParameters",
    "LabelTransferParameters",
    "DeconvolutionParameters",
    "load_parameters",
    "save_parameters",
    "validate_parameters",
]
