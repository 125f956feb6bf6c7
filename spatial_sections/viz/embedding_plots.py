"""Embedding plots (PCA, UMAP) and variance explained."""

import logging
from typing import Optional

import anndata
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from ..dataset import PCA_KEY, UMAP_KEY

logger = logging.getLogger(__name__)


def plot_embedding(
    adata: anndata.AnnData,
    basis: str = UMAP_KEY,
    color_by: Optional[str] = None,
    size: float = 4,
    opacity: float = 0.8,
    title: Optional[str] = None,
    color_map: Optional[str] = None,
    width: int = 700,
    height: int = 600,
) -> go.Figure:
    """
    Plot an embedding colored by spot metadata.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with the embedding in ``obsm[basis]``.
    basis : str
        Key in adata.obsm for embedding coordinates.
    color_by : str, optional
        Column in adata.obs to color by.
    size : float
        Marker size.
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
    if basis not in adata.obsm:
        raise ValueError(f"Basis '{basis}' not found in adata.obsm")

    embedding = np.asarray(adata.obsm[basis])
    if embedding.shape[1] < 2:
        raise ValueError(f"Embedding '{basis}' has fewer than 2 dimensions")

    plot_data = pd.DataFrame({"x": embedding[:, 0], "y": embedding[:, 1]})

    if color_by and color_by in adata.obs.columns:
        values = adata.obs[color_by].to_numpy()
        # Integer cluster ids are categories, not a gradient
        if color_by.endswith("cluster_id"):
            values = values.astype(str)
        plot_data[color_by] = values
        color_col = color_by
    else:
        plot_data["spot"] = "Spot"
        color_col = "spot"

    default_title = f"{basis}: {color_by}" if color_by else basis
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
            opacity=opacity,
            title=title or default_title,
        )

    fig.update_traces(marker=dict(size=size))
    fig.update_layout(
        width=width,
        height=height,
        xaxis_title=f"{basis}_1",
        yaxis_title=f"{basis}_2",
        plot_bgcolor="white",
        xaxis=dict(showgrid=True, gridcolor="lightgray"),
        yaxis=dict(showgrid=True, gridcolor="lightgray"),
    )

    return fig


def plot_umap(adata: anndata.AnnData, color_by: Optional[str] = None, **kwargs) -> go.Figure:
    """Plot the UMAP embedding."""
    if UMAP_KEY not in adata.obsm:
        raise ValueError("UMAP not found. Run reduce_dimensions first.")
    return plot_embedding(adata, basis=UMAP_KEY, color_by=color_by, **kwargs)


def plot_pca(adata: anndata.AnnData, color_by: Optional[str] = None, **kwargs) -> go.Figure:
    """Plot the first two principal components."""
    if PCA_KEY not in adata.obsm:
        raise ValueError("PCA not found. Run reduce_dimensions first.")
    return plot_embedding(adata, basis=PCA_KEY, color_by=color_by, **kwargs)


def plot_variance_explained(
    adata: anndata.AnnData,
    title: Optional[str] = None,
    width: int = 700,
    height: int = 450,
) -> go.Figure:
    """
    Cumulative variance explained per component with the selection threshold.

    Uses ``uns['reduction']`` written by ``reduce_dimensions``.
    """
    reduction = adata.uns.get("reduction")
    if reduction is None:
        raise ValueError("No reduction record found. Run reduce_dimensions first.")

    cumulative = np.asarray(reduction["cumulative_variance"])
    components = np.arange(1, len(cumulative) + 1)
    n_selected = int(reduction["n_components"])

    fig = go.Figure()
    fig.add_trace(go.Scatter(x=components, y=cumulative, mode="lines+markers", name="Cumulative variance"))
    fig.add_hline(
        y=reduction["variance_threshold"],
        line_dash="dash",
        line_color="red",
        annotation_text=f"{reduction['variance_threshold']:.0%}",
    )
    fig.add_vline(x=n_selected, line_dash="dot", line_color="gray", annotation_text=f"PC {n_selected}")
    fig.update_layout(
        title=title or "Cumulative variance explained",
        xaxis_title="Principal component",
        yaxis_title="Cumulative proportion of variance",
        width=width,
        height=height,
        plot_bgcolor="white",
    )
    return fig
