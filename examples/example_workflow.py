"""
Example workflow for a two-section spatial transcriptomics analysis.

This script shows how to:
1. Load two Visium sections and a reference atlas
2. Validate the inputs
3. Load a marker lexicon
4. Run the section branches, integration, label transfer and deconvolution
5. Write tables, figures and a run manifest
"""

import logging
from pathlib import Path

from spatial_sections import export, io, pipeline
from spatial_sections.modeling.parameters import PipelineParameters

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Run the example workflow."""

    # ==================== 1. Load Data ====================
    logger.info("Step 1: Loading sections and reference")

    section_paths = {
        "anterior": "data/anterior",  # Space Ranger output directory
        "posterior": "data/posterior",
    }
    reference_file = "data/allen_cortex.h5ad"
    lexicon_file = "data/Cell_marker_Mouse.xlsx"

    params = PipelineParameters(random_state=42)
    params.branch_timeout = 1800.0

    raw_sections = io.VisiumSectionProvider(section_paths).load_all()
    reference = io.H5ADReferenceProvider(
        reference_file, label_key=params.label_transfer.label_key
    ).load()

    for name, adata in raw_sections.items():
        logger.info(f"Section {name}: {adata.n_obs} spots x {adata.n_vars} genes")

    # ==================== 2. Validate ====================
    logger.info("Step 2: Validating inputs")

    for name, adata in raw_sections.items():
        is_valid, messages = io.validate_schema(adata, strict=True)
        if not is_valid:
            logger.error(f"Section {name} failed validation")
            for msg in messages:
                logger.error(msg)
            return

    is_valid, messages = io.validate_schema(
        reference, label_key=params.label_transfer.label_key
    )
    if not is_valid:
        logger.error("Reference failed validation")
        return

    # ==================== 3. Marker Lexicon ====================
    logger.info("Step 3: Loading marker lexicon")

    lexicon = io.load_marker_lexicon(lexicon_file)
    logger.info(f"Lexicon has {len(lexicon)} entries")

    # ==================== 4. Run Pipeline ====================
    logger.info("Step 4: Running pipeline")

    output_dir = Path("results")
    sink = export.DirectoryArtifactSink(output_dir)

    result = pipeline.run_pipeline(
        raw_sections, reference, lexicon, params=params, sink=sink
    )

    merged = result.merged
    logger.info(
        f"Merged {merged.n_obs} spots into "
        f"{merged.uns['clustering']['n_clusters']} clusters"
    )
    logger.info(
        f"{merged.uns['label_transfer']['n_unassigned']} spots left unassigned"
    )
    logger.info(f"Deconvolved cell types: {', '.join(result.deconvolution.cell_types)}")

    # ==================== 5. Manifest ====================
    logger.info("Step 5: Writing manifest")

    manifest = export.create_manifest(
        merged,
        {name: s.dataset for name, s in result.sections.items()},
        parameters=params.to_dict(),
        input_files=list(section_paths.values()) + [reference_file, lexicon_file],
    )
    export.save_manifest(manifest, str(output_dir / "manifest.json"))

    logger.info("Workflow complete!")
    logger.info(f"Results exported to {output_dir}/")
    logger.info("  - qc_report.csv: Spots and genes before and after QC")
    logger.info("  - sections/<name>/: Per-section markers, spatial genes and plots")
    logger.info("  - integrated/: Merged clusters, labels and proportions")
    logger.info("  - manifest.json: Run metadata")

    # ==================== Optional: Save merged H5AD ====================
    output_h5ad = output_dir / "integrated.h5ad"
    merged.write_h5ad(output_h5ad)
    logger.info(f"Saved merged H5AD to {output_h5ad}")


if __name__ == "__main__":
    main()
