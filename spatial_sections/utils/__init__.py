"""Utility helpers."""

from .deps import MissingDependency, backend_versions, require_backends
from .locks import seeded_primitive_lock

__all__ = ["MissingDependency", "backend_versions", "require_backends", "seeded_primitive_lock"]
