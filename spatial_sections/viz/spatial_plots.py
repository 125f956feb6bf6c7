"""Spatial scatter plots."""

import logging
from typing import List, Optional

import anndata
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from ..dataset import NORMALIZED_LAYER, SECTION_COL, SPATIAL_KEY, layer_as_dense

logger = logging.getLogger(__name__)


def plot_spatial_scatter(
    adata: anndata.AnnData,
    color_by: Optional[str] = None,
    gene: Optional[str] = None,
    layer: str = NORMALIZED_LAYER,
    section: Optional[str] = None,
    spatial_key: str = SPATIAL_KEY,
    size: float = 5,
    opacity: float = 0.8,
    title: Optional[str] = None,
    color_map: Optional[str] = None,
    width: int = 800,
    height: int = 600,
) -> go.Figure:
    """
    Create spatial scatter plot colored by metadata or gene expression.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with coordinates in ``obsm[spatial_key]``.
    color_by : str, optional
        Column in adata.obs to color by. Ignored when ``gene`` is given.
    gene : str, optional
        Gene whose expression in ``layer`` colors the spots.
    layer : str
        Expression layer for ``gene``.
    section : str, optional
        Restrict to spots of one section (merged Datasets).
    spatial_key : str
        Key in adata.obsm for spatial coordinates.
    size : float
        Marker size in pixels.
    opacity : float
        Marker opacity.
    title : str, optional
        Plot title.
    color_map : str, optional
        Continuous colormap name.
    width, height : int
        Figure size in pixels.

    Returns
    -------
    plotly.graph_objects.Figure
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")

    if section is not None:
        adata = adata[adata.obs[SECTION_COL].astype(str) == section]

    coords = np.asarray(adata.obsm[spatial_key])
    # Image row axis points down
    plot_data = pd.DataFrame({"x": coords[:, 0], "y": -coords[:, 1]})

    if gene is not None:
        plot_data[gene] = layer_as_dense(adata, layer, genes=[gene])[:, 0]
        color_col = gene
    elif color_by and color_by in adata.obs.columns:
        values = adata.obs[color_by].to_numpy()
        if color_by.endswith("cluster_id"):
            values = values.astype(str)
        plot_data[color_by] = values
        color_col = color_by
    else:
        plot_data["spot"] = "Spot"
        color_col = "spot"

    label = color_col if color_col != "spot" else ""
    default_title = f"Spatial: {label}" + (f" ({section})" if section else "")

    if pd.api.types.is_numeric_dtype(plot_data[color_col]):
        fig = px.scatter(
            plot_data,
            x="x",
            y="y",
            color=color_col,
            color_continuous_scale=color_map or "viridis",
            opacity=opacity,
            title=title or default_title,
        )
    else:
        fig = px.scatter(
            plot_data,
            x="x",
            y="y",
            color=color_col,
            color_discrete_sequence=px.colors.qualitative.Set1,
            opacity=opacity,
            title=title or default_title,
        )

    fig.update_traces(marker=dict(size=size))
    fig.update_layout(
        width=width,
        height=height,
        plot_bgcolor="white",
        xaxis=dict(showgrid=False, visible=False),
        yaxis=dict(showgrid=False, visible=False, scaleanchor="x", scaleratio=1),
    )

    return fig


def plot_proportions(
    adata: anndata.AnnData,
    proportions: pd.DataFrame,
    cell_type: str,
    section: Optional[str] = None,
    **kwargs,
) -> go.Figure:
    """Spatial scatter of one cell type's estimated proportion."""
    if cell_type not in proportions.columns:
        raise ValueError(f"Cell type '{cell_type}' not in proportions")

    adata = adata.copy()
    column = f"proportion_{cell_type}"
    adata.obs[column] = proportions[cell_type].reindex(adata.obs_names).fillna(0.0).to_numpy()
    kwargs.setdefault("title", f"{cell_type} distribution" + (f" ({section})" if section else ""))
    return plot_spatial_scatter(adata, color_by=column, section=section, **kwargs)


def sample_illustrative_genes(adata: anndata.AnnData, n: int = 2, random_state: int = 0) -> List[str]:
    """
    Draw ``n`` distinct genes at random for illustrative spatial maps.

    The same ``random_state`` and gene axis always give the same genes.
    """
    if n < 0:
        raise ValueError("n must be non-negative")
    n = min(n, adata.n_vars)
    rng = np.random.default_rng(random_state)
    idx = rng.choice(adata.n_vars, size=n, replace=False)
    genes = [str(adata.var_names[i]) for i in idx]
    logger.info(f"Illustrative genes: {', '.join(genes)}")
    return genes
