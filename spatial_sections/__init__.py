"""
spatial-sections: analysis of paired spatial transcriptomics sections.

This package provides tools to:
- Quality-filter and normalize each section's spots
- Reduce dimensions, cluster spots and rank marker genes
- Rank spatially variable genes
- Integrate two sections with anchor-based batch correction
- Transfer cell-type labels from a reference atlas
- Estimate per-spot cell-type proportions from curated markers
"""

__version__ = "0.1.0"

from . import (
    annotation,
    cluster_interpretation,
    deconvolution,
    export,
    integration,
    io,
    modeling,
    pipeline,
    qc,
    spatial,
    viz,
)

__all__ = [
    "annotation",
    "cluster_interpretation",
    "deconvolution",
    "export",
    "integration",
    "io",
    "modeling",
    "pipeline",
    "qc",
    "spatial",
    "viz",
    "__version__",
]
