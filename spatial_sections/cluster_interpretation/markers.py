"""Marker gene computation for clusters and cell-type groups."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import anndata
import numpy as np
import pandas as pd
from scipy import stats

from ..dataset import CLUSTER_COL, RAW_LAYER, UNASSIGNED_CLUSTER, UNASSIGNED_LABEL
from ..modeling.parameters import MarkerParameters
from .utils import prepare_expression_data

logger = logging.getLogger(__name__)

MARKER_COLUMNS = [
    "cluster_id",
    "gene",
    "average_log_fold_change",
    "fraction_expressing_in_cluster",
    "fraction_expressing_outside",
    "p_value",
    "adjusted_p_value",
]


@dataclass
class MarkerSet:
    """Per (group, gene) marker statistics.

    Attributes
    ----------
    table : pd.DataFrame
        One row per retained (group, gene) pair with the columns in
        ``MARKER_COLUMNS``; sorted by group, fold change descending, gene.
    group_col : str
        The ``obs`` column the groups were taken from.
    """

    table: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=MARKER_COLUMNS))
    group_col: str = CLUSTER_COL

    @property
    def groups(self) -> List:
        """Groups with at least one retained marker."""
        return sorted(self.table["cluster_id"].unique().tolist())

    def for_group(self, group) -> pd.DataFrame:
        """All retained markers for one group, in rank order."""
        return self.table[self.table["cluster_id"] == group].reset_index(drop=True)

    def top_k(self, k: int) -> pd.DataFrame:
        """
        Top ``k`` markers per group by fold change.

        Ties on fold change are broken by gene id ascending.
        """
        if k < 1:
            raise ValueError("k must be >= 1")
        ranked = _rank_by_fold_change(self.table)
        return ranked.groupby("cluster_id", sort=True).head(k).reset_index(drop=True)

    def top_by_p_value(self, n: int) -> pd.DataFrame:
        """Top ``n`` markers per group by adjusted p-value, then fold change."""
        ranked = self.table.sort_values(
            ["cluster_id", "adjusted_p_value", "average_log_fold_change", "gene"],
            ascending=[True, True, False, True],
            kind="mergesort",
        )
        return ranked.groupby("cluster_id", sort=True).head(n).reset_index(drop=True)

    def genes(self, k: Optional[int] = None) -> List[str]:
        """Unique marker genes (optionally from the top ``k`` per group), first-seen order."""
        frame = self.top_k(k) if k is not None else self.table
        return list(dict.fromkeys(frame["gene"].tolist()))

    def restrict_to_genes(self, genes: Iterable[str]) -> "MarkerSet":
        """A new MarkerSet keeping only rows whose gene is in ``genes``."""
        keep = set(genes)
        return MarkerSet(
            table=self.table[self.table["gene"].isin(keep)].reset_index(drop=True),
            group_col=self.group_col,
        )


def _rank_by_fold_change(table: pd.DataFrame) -> pd.DataFrame:
    return table.sort_values(
        ["cluster_id", "average_log_fold_change", "gene"],
        ascending=[True, False, True],
        kind="mergesort",
    ).reset_index(drop=True)


def _is_unassigned(values: pd.Series) -> np.ndarray:
    return values.isna().to_numpy() | values.isin([UNASSIGNED_CLUSTER, UNASSIGNED_LABEL]).to_numpy()


def compute_group_markers(
    adata: anndata.AnnData,
    label_col: str,
    group_id,
    expr: Optional[np.ndarray] = None,
    use_layer: str = RAW_LAYER,
) -> pd.DataFrame:
    """
    Compute marker statistics for one group vs all other labelled spots.

    Uses the Wilcoxon rank-sum test with Benjamini-Hochberg correction on
    log-normalized expression. Fold change is Seurat-style:
    ``log2(mean(expm1(x_in)) + 1) - log2(mean(expm1(x_out)) + 1)``.

    Parameters
    ----------
    adata : anndata.AnnData
        Input Dataset.
    label_col : str
        Column in adata.obs containing group labels.
    group_id
        Specific group to compute markers for.
    expr : np.ndarray, optional
        Precomputed log-normalized expression (spots × genes).
    use_layer : str
        Count layer used when ``expr`` is not given.

    Returns
    -------
    pd.DataFrame
        Unfiltered statistics for every gene, columns ``MARKER_COLUMNS``.
    """
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    if expr is None:
        expr = prepare_expression_data(adata, use_layer=use_layer)

    labels = adata.obs[label_col]
    labelled = ~_is_unassigned(labels)
    group_mask = (labels == group_id).to_numpy() & labelled
    other_mask = (labels != group_id).to_numpy() & labelled

    n_in = int(group_mask.sum())
    n_out = int(other_mask.sum())

    if n_in == 0:
        raise ValueError(f"Group '{group_id}' has no spots")
    if n_out == 0:
        raise ValueError("No spots in 'other' group for comparison")

    logger.debug(f"Computing markers for {group_id}: {n_in} spots vs {n_out} other spots")

    expr_in = expr[group_mask, :]
    expr_out = expr[other_mask, :]

    with np.errstate(divide="ignore", invalid="ignore"):
        _, p_values = stats.ranksums(expr_in, expr_out, axis=0)
    p_values = np.where(np.isfinite(p_values), p_values, 1.0)

    mean_in = np.expm1(expr_in).mean(axis=0)
    mean_out = np.expm1(expr_out).mean(axis=0)
    log_fcs = np.log2(mean_in + 1) - np.log2(mean_out + 1)

    pct_in = (expr_in > 0).sum(axis=0) / n_in
    pct_out = (expr_out > 0).sum(axis=0) / n_out

    return pd.DataFrame(
        {
            "cluster_id": [group_id] * adata.n_vars,
            "gene": adata.var_names.astype(str).tolist(),
            "average_log_fold_change": log_fcs,
            "fraction_expressing_in_cluster": pct_in,
            "fraction_expressing_outside": pct_out,
            "p_value": p_values,
            "adjusted_p_value": _benjamini_hochberg_correction(p_values),
        }
    )


def compute_markers(
    adata: anndata.AnnData,
    label_col: str = CLUSTER_COL,
    params: Optional[MarkerParameters] = None,
    groups: Optional[Iterable] = None,
    use_layer: str = RAW_LAYER,
) -> MarkerSet:
    """
    Rank marker genes for every group against all other spots.

    Genes are retained when ``fraction_expressing_in_cluster >= min_fraction``
    and ``|average_log_fold_change| >= min_log_fold_change`` (and the fold
    change is positive when ``only_positive``).

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset with group labels in ``obs[label_col]``.
    label_col : str
        Grouping column (``cluster_id`` or a cell-type column).
    params : MarkerParameters, optional
        Thresholds.
    groups : iterable, optional
        Restrict to these groups. Unassigned spots are never a group.
    use_layer : str
        Raw count layer.

    Returns
    -------
    MarkerSet
        Retained markers for all groups.
    """
    params = params or MarkerParameters()

    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    labels = adata.obs[label_col]
    present = pd.unique(labels[~_is_unassigned(labels)])
    present = sorted(present.tolist())
    if groups is not None:
        wanted = set(groups)
        present = [g for g in present if g in wanted]

    if len(pd.unique(labels[~_is_unassigned(labels)])) < 2:
        logger.warning(f"Fewer than two groups in '{label_col}'; no markers computed")
        return MarkerSet(group_col=label_col)

    expr = prepare_expression_data(adata, use_layer=use_layer)

    frames = []
    for group_id in present:
        stats_df = compute_group_markers(adata, label_col, group_id, expr=expr)
        keep = (stats_df["fraction_expressing_in_cluster"] >= params.min_fraction) & (
            stats_df["average_log_fold_change"].abs() >= params.min_log_fold_change
        )
        if params.only_positive:
            keep &= stats_df["average_log_fold_change"] > 0
        retained = stats_df[keep]
        logger.info(f"Group {group_id}: {len(retained)} marker genes retained")
        frames.append(retained)

    if frames:
        table = _rank_by_fold_change(pd.concat(frames, ignore_index=True))
    else:
        table = pd.DataFrame(columns=MARKER_COLUMNS)

    return MarkerSet(table=table[MARKER_COLUMNS], group_col=label_col)


def _benjamini_hochberg_correction(p_values: np.ndarray) -> np.ndarray:
    """
    Apply Benjamini-Hochberg FDR correction.

    Parameters
    ----------
    p_values : np.ndarray
        Array of p-values.

    Returns
    -------
    np.ndarray
        Array of adjusted p-values.
    """
    p_values = np.asarray(p_values, dtype=np.float64)
    n = len(p_values)
    if n == 0:
        return p_values

    sorted_indices = np.argsort(p_values)
    sorted_p_values = p_values[sorted_indices]

    # p_adj[i] = p[i] * n / (i+1), then enforce monotonicity from the top
    adjusted = sorted_p_values * n / np.arange(1, n + 1)
    adjusted = np.minimum.accumulate(adjusted[::-1])[::-1]

    adj_p_values = np.empty(n)
    adj_p_values[sorted_indices] = np.minimum(adjusted, 1.0)

    return adj_p_values
