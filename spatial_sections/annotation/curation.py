"""Marker gene curation for deconvolution."""

import logging
from typing import Iterable, List, Optional

import anndata
import pandas as pd

from ..cluster_interpretation.markers import MarkerSet, compute_markers
from ..io.lexicon import MarkerLexicon, MarkerQuery
from ..modeling.parameters import DeconvolutionParameters, MarkerParameters

logger = logging.getLogger(__name__)


def curate_marker_genes(
    markers: MarkerSet,
    lexicon: MarkerLexicon,
    params: Optional[DeconvolutionParameters] = None,
) -> pd.DataFrame:
    """
    Cluster markers confirmed by the lexicon, a few per cell type.

    Markers are first restricted to lexicon genes of the configured cell
    types (for ``params.species`` / ``params.tissue``), then to the top
    ``top_k_per_cluster`` per cluster by fold change. For each cell type the
    ``markers_per_cell_type`` highest fold-change rows among its lexicon genes
    are kept.

    Parameters
    ----------
    markers : MarkerSet
        Per-cluster markers of the merged Dataset.
    lexicon : MarkerLexicon
        Marker entries to match against.
    params : DeconvolutionParameters, optional
        Species, tissue, cell types and the two K values.

    Returns
    -------
    pd.DataFrame
        Marker rows with an added ``group`` column (the configured group
        label) and ``cell_type`` column (the lexicon spelling).
    """
    params = params or DeconvolutionParameters()

    query = MarkerQuery(
        species=params.species,
        tissue=params.tissue,
        cell_types=tuple(params.cell_types.values()),
    )
    lexicon_genes = lexicon.query(query)
    all_genes = {g for genes in lexicon_genes.values() for g in genes}

    top = markers.restrict_to_genes(all_genes).top_k(params.top_k_per_cluster) if all_genes else None

    frames = []
    for group, cell_type in params.cell_types.items():
        if top is None:
            break
        rows = top[top["gene"].isin(lexicon_genes.get(cell_type, []))]
        rows = rows.sort_values(
            ["average_log_fold_change", "gene"], ascending=[False, True], kind="mergesort"
        ).head(params.markers_per_cell_type)
        if rows.empty:
            logger.warning(f"No cluster markers confirmed for {group} ({cell_type})")
            continue
        rows = rows.assign(group=group, cell_type=cell_type)
        frames.append(rows)

    if not frames:
        return pd.DataFrame(columns=list(markers.table.columns) + ["group", "cell_type"])

    curated = pd.concat(frames, ignore_index=True)
    logger.info(
        f"Curated {curated['gene'].nunique()} lexicon-confirmed markers for "
        f"{curated['group'].nunique()} cell types"
    )
    return curated


def reference_marker_genes(
    reference: anndata.AnnData,
    cell_types: Iterable[str],
    query_genes: Iterable[str],
    label_key: str = "subclass",
    params: Optional[DeconvolutionParameters] = None,
    marker_params: Optional[MarkerParameters] = None,
) -> pd.DataFrame:
    """
    Top reference markers for the cell types predicted in the query.

    Each reference label is tested against all other reference cells; genes
    not measured in the query are dropped and the ``reference_markers_per_type``
    lowest adjusted p-values are kept per label.
    """
    params = params or DeconvolutionParameters()
    cell_types = sorted(set(cell_types))

    markers = compute_markers(reference, label_col=label_key, params=marker_params, groups=cell_types)
    markers = markers.restrict_to_genes(query_genes)
    top = markers.top_by_p_value(params.reference_markers_per_type)

    logger.info(
        f"Selected {top['gene'].nunique()} reference markers for {top['cluster_id'].nunique()} cell types"
    )
    return top


def deconvolution_marker_genes(curated: pd.DataFrame, reference_markers: pd.DataFrame) -> List[str]:
    """Union of curated and reference marker genes, curated first."""
    genes = list(curated["gene"]) + list(reference_markers["gene"])
    return list(dict.fromkeys(genes))
