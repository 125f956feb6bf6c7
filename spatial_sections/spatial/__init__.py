"""Spatial neighbor graphs, autocorrelation and slide diagnostics."""

from .autocorrelation import find_spatial_genes, markers_for_spatial_genes, morans_i, rank_spatial_genes
from .diagnostics import compute_slide_properties, graph_diagnostics, plot_degree_distribution
from .neighbors import compute_neighbors, knn_graph

__all__ = [
    "compute_neighbors",
    "knn_graph",
    "morans_i",
    "rank_spatial_genes",
    "find_spatial_genes",
    "markers_for_spatial_genes",
    "graph_diagnostics",
    "compute_slide_properties",
    "plot_degree_distribution",
]
