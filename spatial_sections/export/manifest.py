"""Manifest creation for documenting run parameters and metadata."""

import hashlib
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import anndata

from .. import __version__
from ..dataset import CLUSTER_COL, SECTION_COL
from ..utils.deps import backend_versions

logger = logging.getLogger(__name__)


def compute_file_hash(file_path: str, algorithm: str = "sha256") -> str:
    """
    Compute hash of a file.

    Parameters
    ----------
    file_path : str
        Path to file.
    algorithm : str
        Hash algorithm ('md5', 'sha256').

    Returns
    -------
    str
        Hex digest of file hash.
    """
    hash_func = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_func.update(chunk)

    return hash_func.hexdigest()


def _describe_input(path) -> Dict[str, Any]:
    path = Path(path)
    info = {"path": str(path), "name": path.name}
    if path.is_file():
        info["size_bytes"] = path.stat().st_size
        info["sha256"] = compute_file_hash(str(path), "sha256")
    return info


def create_manifest(
    merged: anndata.AnnData,
    sections: Mapping[str, anndata.AnnData],
    parameters: Optional[Dict[str, Any]] = None,
    input_files: Iterable = (),
) -> Dict[str, Any]:
    """
    Create a manifest documenting the analysis run.

    Parameters
    ----------
    merged : anndata.AnnData
        Integrated Dataset.
    sections : mapping of str to AnnData
        Processed per-section Datasets (with ``uns['qc']``).
    parameters : dict, optional
        Pipeline parameters as a nested dict.
    input_files : iterable
        Input paths (files are hashed, directories only listed).

    Returns
    -------
    dict
        Manifest dictionary.
    """
    manifest = {
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "input": {"files": [_describe_input(p) for p in input_files]},
        "sections": {},
        "parameters": parameters or {},
        "output": {
            "n_spots": merged.n_obs,
            "n_genes": merged.n_vars,
            "n_clusters": int(merged.obs[CLUSTER_COL].nunique()) if CLUSTER_COL in merged.obs else None,
            "spots_per_section": (
                merged.obs[SECTION_COL].astype(str).value_counts().to_dict()
                if SECTION_COL in merged.obs
                else {}
            ),
            "integration": merged.uns.get("integration", {}),
            "label_transfer": {
                k: v for k, v in merged.uns.get("label_transfer", {}).items() if k != "unassigned_spots"
            },
        },
    }

    for name, adata in sections.items():
        qc = adata.uns.get("qc", {})
        manifest["sections"][name] = {
            "spots_before_qc": qc.get("spots_before"),
            "spots_after_qc": qc.get("spots_after", adata.n_obs),
            "n_components": adata.uns.get("reduction", {}).get("n_components"),
            "n_clusters": adata.uns.get("clustering", {}).get("n_clusters"),
        }

    try:
        import scanpy as sc

        manifest["software"] = {
            "python_version": sys.version,
            "spatial_sections_version": __version__,
            "scanpy_version": sc.__version__,
            "anndata_version": anndata.__version__,
            "backends": backend_versions(),
        }
    except ImportError as e:
        logger.warning(f"Could not retrieve software versions: {e}")

    return manifest


def save_manifest(manifest: Dict[str, Any], output_file: str) -> None:
    """
    Save manifest to JSON file.

    Parameters
    ----------
    manifest : dict
        Manifest dictionary.
    output_file : str
        Output JSON file path.
    """
    logger.info(f"Saving manifest to {output_file}")

    with open(output_file, "w") as f:
        json.dump(manifest, f, indent=2, default=str)

    logger.info("Manifest saved")


def validate_manifest(manifest: Dict[str, Any]) -> Tuple[bool, list]:
    """
    Validate manifest structure.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    for key in ["timestamp", "version", "input", "sections", "parameters", "output"]:
        if key not in manifest:
            errors.append(f"Missing required key: {key}")

    if "input" in manifest and "files" not in manifest["input"]:
        errors.append("Missing 'files' in input section")

    if "output" in manifest and "n_spots" not in manifest["output"]:
        errors.append("Missing 'n_spots' in output section")

    return len(errors) == 0, errors
