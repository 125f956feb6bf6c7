"""Plotly figures for embeddings, QC metrics and spatial layouts."""

from .embedding_plots import plot_embedding, plot_pca, plot_umap, plot_variance_explained
from .qc_plots import plot_qc_distributions, plot_qc_relationships
from .spatial_plots import plot_proportions, plot_spatial_scatter, sample_illustrative_genes

__all__ = [
    "plot_embedding",
    "plot_pca",
    "plot_umap",
    "plot_variance_explained",
    "plot_qc_distributions",
    "plot_qc_relationships",
    "plot_proportions",
    "plot_spatial_scatter",
    "sample_illustrative_genes",
]
