"""Spatial graph diagnostics and slide properties."""

import logging
from typing import Dict, Optional

import anndata
import numpy as np
import pandas as pd
from scipy.sparse.csgraph import connected_components
from scipy.spatial.distance import pdist

from ..dataset import LIBRARY_COL, SECTION_COL, SPATIAL_KEY
from .neighbors import CONNECTIVITIES_KEY

logger = logging.getLogger(__name__)


def graph_diagnostics(adata: anndata.AnnData, connectivities_key: str = CONNECTIVITIES_KEY) -> Dict:
    """
    Compute diagnostic statistics for spatial neighbor graph.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with neighbor graph.
    connectivities_key : str
        Key in adata.obsp containing connectivity matrix.

    Returns
    -------
    dict
        Dictionary with diagnostic statistics.
    """
    if connectivities_key not in adata.obsp:
        raise ValueError(f"Connectivity key '{connectivities_key}' not found in adata.obsp")

    connectivities = adata.obsp[connectivities_key]

    degree = np.array(connectivities.sum(axis=1)).flatten()

    n_components, labels = connected_components(
        connectivities, directed=False, return_labels=True
    )
    component_sizes = pd.Series(labels).value_counts().sort_values(ascending=False)

    diagnostics = {
        "n_spots": adata.n_obs,
        "n_edges": int(connectivities.nnz // 2),
        "degree": {
            "mean": float(degree.mean()),
            "median": float(np.median(degree)),
            "min": int(degree.min()),
            "max": int(degree.max()),
            "std": float(degree.std()),
        },
        "connected_components": {
            "n_components": int(n_components),
            "largest_component_size": int(component_sizes.iloc[0]) if len(component_sizes) > 0 else 0,
            "isolated_spots": int(np.sum(degree == 0)),
        },
        "sparsity": float(1 - (connectivities.nnz / (adata.n_obs ** 2))),
    }

    logger.info(
        f"Graph diagnostics: {diagnostics['n_edges']} edges, "
        f"{diagnostics['degree']['mean']:.1f} avg degree, "
        f"{diagnostics['connected_components']['n_components']} components"
    )

    return diagnostics


def compute_slide_properties(
    adata: anndata.AnnData,
    section: Optional[str] = None,
    spatial_key: str = SPATIAL_KEY,
) -> Dict:
    """
    Spot size, mean inter-spot distance and spot count for one section.

    Distances are scaled to microns with ``tissue_hires_scalef`` from the
    library's scale factors in ``uns['spatial']``. Missing scale factors give
    NaN for the size-derived fields.

    Parameters
    ----------
    adata : anndata.AnnData
        Raw or filtered Dataset of a single section.
    section : str, optional
        Section name; defaults to the Dataset's section tag.
    spatial_key : str
        Coordinates in ``obsm``.

    Returns
    -------
    dict
        Section, Spot_Size_Microns, Avg_Distance_Microns, Total_Spots
    """
    if section is None and SECTION_COL in adata.obs.columns and adata.n_obs:
        section = str(adata.obs[SECTION_COL].iloc[0])

    scalefactors = {}
    if LIBRARY_COL in adata.obs.columns and adata.n_obs:
        library_id = str(adata.obs[LIBRARY_COL].iloc[0])
        scalefactors = adata.uns.get("spatial", {}).get(library_id, {}).get("scalefactors", {})

    hires_scale = scalefactors.get("tissue_hires_scalef", np.nan)
    spot_diameter = scalefactors.get("spot_diameter_fullres", np.nan)

    coords = np.asarray(adata.obsm[spatial_key], dtype=np.float64)
    coords = coords[~np.isnan(coords).any(axis=1)]
    if coords.shape[0] > 1:
        avg_distance = float(np.mean(pdist(coords))) * hires_scale
    else:
        avg_distance = np.nan

    properties = {
        "Section": section,
        "Spot_Size_Microns": float(spot_diameter * hires_scale),
        "Avg_Distance_Microns": float(avg_distance),
        "Total_Spots": int(coords.shape[0]),
    }
    logger.info(f"Slide properties for {section}: {properties}")
    return properties


def plot_degree_distribution(
    adata: anndata.AnnData,
    connectivities_key: str = CONNECTIVITIES_KEY,
    figsize: tuple = (8, 5),
):
    """
    Plot degree distribution histogram.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with neighbor graph.
    connectivities_key : str
        Key in adata.obsp containing connectivity matrix.
    figsize : tuple
        Figure size.

    Returns
    -------
    matplotlib.figure.Figure
        Figure object.
    """
    import matplotlib.pyplot as plt

    if connectivities_key not in adata.obsp:
        raise ValueError(f"Connectivity key '{connectivities_key}' not found in adata.obsp")

    degree = np.array(adata.obsp[connectivities_key].sum(axis=1)).flatten()
    degree_dist = pd.Series(degree).value_counts().sort_index()

    fig, ax = plt.subplots(figsize=figsize)
    ax.bar(degree_dist.index, degree_dist.values)
    ax.set_xlabel("Number of Neighbors")
    ax.set_ylabel("Number of Spots")
    ax.set_title("Spatial Neighbor Graph Degree Distribution")
    ax.grid(True, alpha=0.3)

    return fig
