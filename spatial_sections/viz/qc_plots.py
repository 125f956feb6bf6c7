"""QC metric distributions and pairwise relationships."""

import logging
from itertools import combinations
from typing import Dict, Optional, Sequence

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

logger = logging.getLogger(__name__)

QC_METRICS = ["detected_feature_count", "total_count", "mito_fraction"]
PASSED_COL = "passed_qc"


def _with_status(metrics: pd.DataFrame) -> pd.DataFrame:
    data = metrics.copy()
    if PASSED_COL in data.columns:
        data["status"] = data[PASSED_COL].map({True: "kept", False: "removed"})
    else:
        data["status"] = "kept"
    return data


def plot_qc_distributions(
    metrics: pd.DataFrame,
    columns: Sequence[str] = QC_METRICS,
    title: Optional[str] = None,
    width: int = 900,
    height: int = 450,
) -> go.Figure:
    """
    Violin plot of each QC metric, one panel per metric.

    Parameters
    ----------
    metrics : pd.DataFrame
        Per-spot metrics from ``compute_qc_metrics``, optionally with a
        boolean ``passed_qc`` column.
    columns : sequence of str
        Metrics to show.
    title : str, optional
        Plot title.
    width, height : int
        Figure size in pixels.

    Returns
    -------
    plotly.graph_objects.Figure
    """
    missing = [c for c in columns if c not in metrics.columns]
    if missing:
        raise ValueError(f"QC metrics not found: {missing}")

    data = _with_status(metrics)
    long = data.melt(id_vars=["status"], value_vars=list(columns), var_name="metric", value_name="value")

    fig = px.violin(
        long,
        x="status",
        y="value",
        color="status",
        facet_col="metric",
        box=True,
        points="all",
        category_orders={"metric": list(columns), "status": ["kept", "removed"]},
        title=title or "QC metric distributions",
    )
    # Each metric on its own scale
    fig.update_yaxes(matches=None, showticklabels=True)
    fig.for_each_annotation(lambda a: a.update(text=a.text.split("=")[-1]))
    fig.update_layout(width=width, height=height, plot_bgcolor="white", showlegend=False)
    return fig


def plot_qc_relationships(
    metrics: pd.DataFrame,
    columns: Sequence[str] = ("total_count", "detected_feature_count", "mito_fraction"),
    width: int = 600,
    height: int = 500,
) -> Dict[str, go.Figure]:
    """
    Scatter plots for every pair of QC metrics.

    Returns
    -------
    dict
        ``"<x>_vs_<y>"`` -> figure, spots colored by whether they passed QC.
    """
    data = _with_status(metrics)
    figures = {}
    for x, y in combinations(columns, 2):
        fig = px.scatter(
            data,
            x=x,
            y=y,
            color="status",
            color_discrete_map={"kept": "#377eb8", "removed": "#e41a1c"},
            opacity=0.7,
            title=f"{y} vs {x}",
        )
        fig.update_layout(width=width, height=height, plot_bgcolor="white")
        figures[f"{x}_vs_{y}"] = fig
    return figures
