"""Cell-type proportion estimation."""

from .proportions import (
    PROPORTIONS_KEY,
    DeconvolutionResult,
    attach_proportions,
    deconvolution_cell_types,
    estimate_proportions,
    reference_profiles,
)

__all__ = [
    "PROPORTIONS_KEY",
    "DeconvolutionResult",
    "attach_proportions",
    "deconvolution_cell_types",
    "estimate_proportions",
    "reference_profiles",
]
