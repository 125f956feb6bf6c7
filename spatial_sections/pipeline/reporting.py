"""Emit pipeline tables and figures to an artifact sink."""

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..cluster_interpretation.summaries import compute_cluster_summary
from ..dataset import CELL_TYPE_COL, CLUSTER_COL, RAW_LAYER, SECTION_COL
from ..export.sink import ArtifactSink
from ..modeling.parameters import PipelineParameters
from ..spatial.diagnostics import plot_degree_distribution
from ..viz.embedding_plots import plot_pca, plot_umap, plot_variance_explained
from ..viz.qc_plots import QC_METRICS, plot_qc_distributions, plot_qc_relationships
from ..viz.spatial_plots import plot_proportions, plot_spatial_scatter

if TYPE_CHECKING:
    from .orchestrator import PipelineResult

logger = logging.getLogger(__name__)


def _slug(value) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", str(value))


def emit_artifacts(
    result: "PipelineResult",
    sink: ArtifactSink,
    params: Optional[PipelineParameters] = None,
) -> None:
    """
    Write the run's tables and figures.

    Per section: QC metric distributions, pairwise relationships and spatial
    maps, raw-count maps of the illustrative genes, marker table (top
    ``top_k_table`` per cluster), spatial genes, PCA, UMAP and spatial
    cluster maps, spatial maps of the top ``top_k_plot`` markers per
    cluster, variance explained and the neighbour degree histogram. For the
    merged Dataset: QC report, slide properties, cluster summary, merged and
    curated markers, reference markers, label counts, proportions and their
    spatial maps.
    """
    params = params or PipelineParameters()
    marker_params = params.markers

    sink.write_table("qc_report", result.qc_report)
    sink.write_table("slide_properties", result.slide_properties)

    for name, section in result.sections.items():
        adata = section.dataset
        prefix = f"sections/{_slug(name)}"

        if section.qc_metrics is not None:
            sink.write_table(f"{prefix}/qc_metrics", section.qc_metrics)
            sink.write_figure(f"{prefix}/qc_distributions", plot_qc_distributions(section.qc_metrics))
            for pair, fig in plot_qc_relationships(section.qc_metrics).items():
                sink.write_figure(f"{prefix}/qc_{pair}", fig)
        for metric in QC_METRICS:
            sink.write_figure(f"{prefix}/qc_spatial_{metric}", plot_spatial_scatter(adata, color_by=metric))
        for gene in section.illustrative_genes:
            sink.write_figure(
                f"{prefix}/illustrative_{_slug(gene)}",
                plot_spatial_scatter(adata, gene=gene, layer=RAW_LAYER),
            )

        sink.write_table(f"{prefix}/markers", section.markers.top_k(marker_params.top_k_table))
        sink.write_table(f"{prefix}/spatial_genes", section.spatial_genes)
        sink.write_table(f"{prefix}/spatial_gene_markers", section.spatial_markers)

        sink.write_figure(f"{prefix}/pca_clusters", plot_pca(adata, color_by=CLUSTER_COL))
        sink.write_figure(f"{prefix}/umap_clusters", plot_umap(adata, color_by=CLUSTER_COL))
        sink.write_figure(f"{prefix}/spatial_clusters", plot_spatial_scatter(adata, color_by=CLUSTER_COL))
        sink.write_figure(f"{prefix}/variance_explained", plot_variance_explained(adata))
        sink.write_figure(f"{prefix}/spatial_degree", plot_degree_distribution(adata))

        for gene in section.markers.genes(marker_params.top_k_plot):
            sink.write_figure(f"{prefix}/marker_{_slug(gene)}", plot_spatial_scatter(adata, gene=gene))

        for gene in section.spatial_genes["gene"]:
            sink.write_figure(f"{prefix}/spatial_gene_{_slug(gene)}", plot_spatial_scatter(adata, gene=gene))

    merged = result.merged
    sink.write_table("integrated/cluster_summary", compute_cluster_summary(merged))
    sink.write_table("integrated/markers", result.merged_markers.top_k(marker_params.top_k_table))
    sink.write_table("integrated/curated_markers", result.curated_markers)
    sink.write_table("integrated/reference_markers", result.reference_markers)
    sink.write_table(
        "integrated/predicted_cell_types",
        compute_cluster_summary(merged, label_col=CELL_TYPE_COL, exclude_unassigned=False),
    )
    sink.write_table("integrated/proportions", result.deconvolution.proportions)

    for color in (SECTION_COL, CLUSTER_COL, CELL_TYPE_COL):
        sink.write_figure(f"integrated/umap_{color}", plot_umap(merged, color_by=color))

    if result.unintegrated is not None:
        for color in (SECTION_COL, CLUSTER_COL):
            sink.write_figure(
                f"unintegrated/umap_{color}", plot_umap(result.unintegrated, color_by=color)
            )

    sections = merged.obs[SECTION_COL].astype(str).unique().tolist()
    for section in sections:
        sink.write_figure(
            f"integrated/spatial_{CELL_TYPE_COL}_{_slug(section)}",
            plot_spatial_scatter(merged, color_by=CELL_TYPE_COL, section=section),
        )
        for cell_type in result.deconvolution.cell_types:
            sink.write_figure(
                f"integrated/proportion_{_slug(cell_type)}_{_slug(section)}",
                plot_proportions(merged, result.deconvolution.proportions, cell_type, section=section),
            )

    for _, row in result.curated_markers.iterrows():
        for section in sections:
            sink.write_figure(
                f"integrated/curated_{_slug(row['group'])}_{_slug(row['gene'])}_{_slug(section)}",
                plot_spatial_scatter(merged, gene=row["gene"], section=section),
            )

    logger.info("Artifacts emitted")
