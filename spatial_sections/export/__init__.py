"""Artifact sinks and run manifests."""

from .manifest import compute_file_hash, create_manifest, save_manifest, validate_manifest
from .sink import ArtifactSink, DirectoryArtifactSink, MemoryArtifactSink

__all__ = [
    "ArtifactSink",
    "DirectoryArtifactSink",
    "MemoryArtifactSink",
    "compute_file_hash",
    "create_manifest",
    "save_manifest",
    "validate_manifest",
]
