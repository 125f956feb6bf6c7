"""Checks for the graph and embedding back-ends scanpy dispatches to."""

import importlib
import logging
from importlib import metadata
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Import name -> distribution name
NUMERICAL_BACKENDS: Dict[str, str] = {
    "igraph": "python-igraph",
    "leidenalg": "leidenalg",
    "umap": "umap-learn",
}


class MissingDependency(Exception):
    """A numerical back-end needed by a stage cannot be imported."""

    def __init__(self, package_name: str, stage: str):
        self.package_name = package_name
        self.stage = stage
        dist = NUMERICAL_BACKENDS.get(package_name, package_name)
        super().__init__(
            f"[{stage}] missing dependency '{package_name}'. Install with: pip install {dist}"
        )


def require_backends(stage: str, *import_names: str) -> None:
    """
    Import each back-end, raising MissingDependency on the first failure.

    Parameters
    ----------
    stage : str
        Stage name reported in the error.
    *import_names : str
        Import names, e.g. ``"igraph", "leidenalg"``.
    """
    for name in import_names:
        try:
            importlib.import_module(name)
        except ImportError:
            logger.error(f"{stage}: back-end '{name}' is not installed")
            raise MissingDependency(name, stage)


def backend_versions() -> Dict[str, Optional[str]]:
    """Installed version of each numerical back-end, None when absent."""
    versions = {}
    for dist in NUMERICAL_BACKENDS.values():
        try:
            versions[dist] = metadata.version(dist)
        except metadata.PackageNotFoundError:
            versions[dist] = None
    return versions
