"""Two-section pipeline: per-section branches, integration and annotation."""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import anndata
import pandas as pd

from ..annotation.curation import (
    curate_marker_genes,
    deconvolution_marker_genes,
    reference_marker_genes,
)
from ..annotation.label_transfer import transfer_labels
from ..cluster_interpretation.markers import MarkerSet, compute_markers
from ..dataset import CELL_TYPE_COL, CLUSTER_COL, CORRECTED_LAYER, UNASSIGNED_LABEL
from ..deconvolution.proportions import (
    DeconvolutionResult,
    attach_proportions,
    deconvolution_cell_types,
    estimate_proportions,
)
from ..errors import StageTimeoutError
from ..export.sink import ArtifactSink
from ..integration.anchors import AnchorSet
from ..integration.merge import integrate_sections, merge_unintegrated
from ..io.lexicon import MarkerLexicon
from ..modeling.clustering import cluster_spots
from ..modeling.normalization import normalize_dataset
from ..modeling.parameters import PipelineParameters
from ..modeling.reduction import reduce_dimensions
from ..qc.filters import apply_qc_filters, compute_qc_metrics
from ..qc.summaries import compute_filter_report
from ..spatial.autocorrelation import find_spatial_genes, markers_for_spatial_genes
from ..spatial.diagnostics import compute_slide_properties, graph_diagnostics
from ..spatial.neighbors import compute_neighbors
from ..viz.spatial_plots import sample_illustrative_genes
from .reporting import emit_artifacts

logger = logging.getLogger(__name__)


@dataclass
class SectionResult:
    """Outputs of one section branch."""

    name: str
    dataset: anndata.AnnData
    markers: MarkerSet
    spatial_genes: pd.DataFrame
    spatial_markers: pd.DataFrame
    slide_properties: Dict = field(default_factory=dict)
    graph_diagnostics: Dict = field(default_factory=dict)
    # Metrics of every raw spot with a boolean passed_qc column
    qc_metrics: Optional[pd.DataFrame] = None
    illustrative_genes: List[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Outputs of a full two-section run."""

    sections: Dict[str, SectionResult]
    merged: anndata.AnnData
    anchors: AnchorSet
    merged_markers: MarkerSet
    curated_markers: pd.DataFrame
    reference_markers: pd.DataFrame
    deconvolution: DeconvolutionResult
    qc_report: pd.DataFrame
    unintegrated: Optional[anndata.AnnData] = None

    @property
    def slide_properties(self) -> pd.DataFrame:
        return pd.DataFrame([s.slide_properties for s in self.sections.values()])


def run_section(
    name: str,
    raw: anndata.AnnData,
    params: Optional[PipelineParameters] = None,
) -> SectionResult:
    """
    Process one section: QC, normalization, reduction, clustering, markers
    and spatially variable genes.

    Parameters
    ----------
    name : str
        Section name.
    raw : anndata.AnnData
        Raw Dataset from the section provider. Not modified.
    params : PipelineParameters, optional
        Run parameters; ``random_state`` seeds every stochastic step.

    Returns
    -------
    SectionResult
    """
    params = params or PipelineParameters()
    seed = params.random_state

    logger.info(f"[{name}] Starting section branch ({raw.n_obs} spots)")
    properties = compute_slide_properties(raw, section=name)

    qc_metrics = compute_qc_metrics(raw, mito_prefix=params.qc.mito_prefix)
    adata = apply_qc_filters(raw, params.qc)
    qc_metrics["passed_qc"] = qc_metrics.index.isin(adata.obs_names)
    illustrative_genes = sample_illustrative_genes(adata, params.n_illustrative_genes, random_state=seed)

    adata = normalize_dataset(adata, params.normalization)
    adata = reduce_dimensions(adata, params.reduction, random_state=seed)
    adata = cluster_spots(adata, params.clustering, random_state=seed)

    markers = compute_markers(adata, label_col=CLUSTER_COL, params=params.markers)
    spatial_genes = find_spatial_genes(adata, params.spatial_genes)
    spatial_markers = markers_for_spatial_genes(markers, spatial_genes["gene"])

    compute_neighbors(adata, method="knn", n_neighbors=params.spatial_genes.n_neighbors)
    diagnostics = graph_diagnostics(adata)

    logger.info(
        f"[{name}] Branch complete: {adata.n_obs} spots, "
        f"{adata.uns['clustering']['n_clusters']} clusters"
    )
    return SectionResult(
        name=name,
        dataset=adata,
        markers=markers,
        spatial_genes=spatial_genes,
        spatial_markers=spatial_markers,
        slide_properties=properties,
        graph_diagnostics=diagnostics,
        qc_metrics=qc_metrics,
        illustrative_genes=illustrative_genes,
    )


def run_sections(
    raw_sections: Mapping[str, anndata.AnnData],
    params: Optional[PipelineParameters] = None,
) -> Dict[str, SectionResult]:
    """
    Run the section branches concurrently and wait for all of them.

    Raises
    ------
    StageTimeoutError
        If a branch does not finish within ``params.branch_timeout`` seconds.
    """
    params = params or PipelineParameters()
    n_workers = max(1, min(params.n_workers, len(raw_sections)))

    results = {}
    executor = ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix="section")
    futures = {
        name: executor.submit(run_section, name, raw, params)
        for name, raw in raw_sections.items()
    }
    try:
        for name, future in futures.items():
            try:
                results[name] = future.result(timeout=params.branch_timeout)
            except FutureTimeoutError:
                raise StageTimeoutError(
                    f"section:{name}",
                    f"branch did not finish within {params.branch_timeout} s",
                ) from None
    finally:
        # A timed-out branch keeps running in its thread; do not block on it
        executor.shutdown(wait=False, cancel_futures=True)

    return results


def run_pipeline(
    raw_sections: Mapping[str, anndata.AnnData],
    reference: anndata.AnnData,
    lexicon: MarkerLexicon,
    params: Optional[PipelineParameters] = None,
    sink: Optional[ArtifactSink] = None,
) -> PipelineResult:
    """
    Run the full analysis on two sections.

    Parameters
    ----------
    raw_sections : mapping of str to AnnData
        Exactly two raw section Datasets; the first is the integration
        reference frame.
    reference : anndata.AnnData
        Reference atlas with ``raw_counts`` and the label column.
    lexicon : MarkerLexicon
        Marker entries for curation.
    params : PipelineParameters, optional
        Run parameters.
    sink : ArtifactSink, optional
        Receives tables and figures; nothing is emitted when None.

    Returns
    -------
    PipelineResult
    """
    params = params or PipelineParameters()
    if len(raw_sections) != 2:
        raise ValueError(f"Expected exactly two sections, got {len(raw_sections)}")

    seed = params.random_state
    label_key = params.label_transfer.label_key

    sections = run_sections(raw_sections, params)
    qc_report = compute_filter_report({n: s.dataset for n, s in sections.items()})

    name_a, name_b = list(sections)
    section_a = sections[name_a].dataset
    section_b = sections[name_b].dataset

    logger.info("Integrating sections")
    merged, anchors = integrate_sections(
        section_a,
        section_b,
        params=params.integration,
        reduction_params=params.reduction,
        clustering_params=params.clustering,
        random_state=seed,
    )

    unintegrated = None
    if params.integration.compare_unintegrated:
        logger.info("Building unintegrated baseline")
        unintegrated = merge_unintegrated(
            section_a,
            section_b,
            params=params.integration,
            reduction_params=params.reduction,
            clustering_params=params.clustering,
            random_state=seed,
        )

    logger.info("Transferring reference labels")
    merged = transfer_labels(
        merged,
        reference,
        params=params.label_transfer,
        normalization=params.normalization,
        query_layer=CORRECTED_LAYER,
        random_state=seed,
    )

    labelled = merged[merged.obs[CELL_TYPE_COL] != UNASSIGNED_LABEL].copy()
    merged_markers = compute_markers(labelled, label_col=CLUSTER_COL, params=params.markers)

    curated = curate_marker_genes(merged_markers, lexicon, params.deconvolution)

    cell_types = deconvolution_cell_types(
        merged,
        reference,
        label_key=label_key,
        min_spots_per_type=params.deconvolution.min_spots_per_type,
    )
    ref_markers = reference_marker_genes(
        reference,
        cell_types,
        merged.var_names,
        label_key=label_key,
        params=params.deconvolution,
        marker_params=params.markers,
    )
    marker_genes = deconvolution_marker_genes(curated, ref_markers)

    deconvolution = estimate_proportions(
        merged,
        reference,
        marker_genes,
        params=params.deconvolution,
        label_key=label_key,
        cell_types=cell_types,
    )
    merged = attach_proportions(merged, deconvolution)

    result = PipelineResult(
        sections=sections,
        merged=merged,
        anchors=anchors,
        merged_markers=merged_markers,
        curated_markers=curated,
        reference_markers=ref_markers,
        deconvolution=deconvolution,
        qc_report=qc_report,
        unintegrated=unintegrated,
    )

    if sink is not None:
        emit_artifacts(result, sink, params)

    logger.info("Pipeline complete")
    return result
