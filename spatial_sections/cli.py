"""Command-line interface for spatial-sections."""

import logging
import sys
from pathlib import Path

import click

from . import __version__, export, io, pipeline
from .errors import PipelineError
from .modeling.parameters import (
    PipelineParameters,
    load_parameters,
    save_parameters,
    validate_parameters,
)


# Configure logging
def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_sections(values):
    sections = {}
    for value in values:
        if "=" not in value:
            raise click.BadParameter(f"expected NAME=PATH, got '{value}'", param_hint="--section")
        name, path = value.split("=", 1)
        sections[name] = path
    return sections


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose):
    """spatial-sections: two-section spatial transcriptomics analysis."""
    setup_logging(verbose)


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--strict", is_flag=True, help="Enable strict validation")
@click.option("--label-key", default=None, help="Validate as a reference with this label column")
def validate(input_file, strict, label_key):
    """
    Validate an H5AD section or reference.

    INPUT_FILE: Path to H5AD file
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Validating {input_file}")

    adata = io.load_h5ad(input_file)
    is_valid, messages = io.validate_schema(adata, strict=strict, label_key=label_key)
    summary = io.summarize_adata(adata, label_key=label_key)

    click.echo("\n=== Validation Results ===")
    click.echo(f"Status: {'PASSED' if is_valid else 'FAILED'}")
    click.echo("\nMessages:")
    for msg in messages:
        click.echo(f"  {msg}")

    click.echo("\n=== Summary ===")
    click.echo(f"  observations: {summary['n_obs']}")
    click.echo(f"  genes: {summary['n_vars']}")
    click.echo(f"  layers: {', '.join(summary['layers']) or '-'}")

    sys.exit(0 if is_valid else 1)


@main.command("init-config")
@click.argument("output_file", type=click.Path())
def init_config(output_file):
    """
    Write the default parameters to a TOML file.

    OUTPUT_FILE: Path to TOML file
    """
    save_parameters(PipelineParameters(), output_file)
    click.echo(f"Default parameters written to {output_file}")


@main.command()
@click.option(
    "--section",
    "sections",
    multiple=True,
    required=True,
    help="Section as NAME=PATH (Space Ranger directory or .h5ad); give twice",
)
@click.option("--reference", type=click.Path(exists=True), required=True, help="Reference atlas H5AD")
@click.option("--lexicon", type=click.Path(exists=True), required=True, help="Marker lexicon (CSV/TSV/XLSX)")
@click.option("--config", "config_file", type=click.Path(exists=True), help="Parameters TOML")
@click.option("--output", "-o", type=click.Path(), default="results", help="Output directory")
@click.option("--random-state", type=int, default=None, help="Override the random seed")
@click.option("--compare-unintegrated", is_flag=True, help="Also cluster a plain merge of the sections")
def run(sections, reference, lexicon, config_file, output, random_state, compare_unintegrated):
    """
    Run the full two-section pipeline.
    """
    logger = logging.getLogger(__name__)

    params = load_parameters(config_file) if config_file else PipelineParameters()
    if random_state is not None:
        params.random_state = random_state
    if compare_unintegrated:
        params.integration.compare_unintegrated = True

    is_valid, errors = validate_parameters(params)
    if not is_valid:
        for err in errors:
            click.echo(f"  ERROR: {err}", err=True)
        sys.exit(2)

    section_paths = _parse_sections(sections)
    if len(section_paths) != 2:
        raise click.BadParameter("exactly two sections are required", param_hint="--section")

    try:
        provider = io.VisiumSectionProvider(section_paths)
        raw_sections = provider.load_all()
        atlas = io.H5ADReferenceProvider(reference, label_key=params.label_transfer.label_key).load()
        markers = io.load_marker_lexicon(lexicon)

        out_dir = Path(output)
        sink = export.DirectoryArtifactSink(out_dir)
        result = pipeline.run_pipeline(raw_sections, atlas, markers, params=params, sink=sink)
    except PipelineError as e:
        logger.error(str(e))
        sys.exit(1)

    manifest = export.create_manifest(
        result.merged,
        {name: s.dataset for name, s in result.sections.items()},
        parameters=params.to_dict(),
        input_files=list(section_paths.values()) + [reference, lexicon],
    )
    export.save_manifest(manifest, str(out_dir / "manifest.json"))

    click.echo("\n=== Run Summary ===")
    click.echo(result.qc_report.to_string(index=False))
    click.echo(f"\nMerged spots: {result.merged.n_obs}")
    click.echo(f"Clusters: {result.merged.uns['clustering']['n_clusters']}")
    click.echo(f"Unassigned spots: {result.merged.uns['label_transfer']['n_unassigned']}")
    click.echo(f"Outputs written to {out_dir}")


if __name__ == "__main__":
    main()
