"""Data providers, marker lexicon and schema validation."""

from .lexicon import (
    MarkerLexicon,
    MarkerQuery,
    lexicon_from_frame,
    load_marker_lexicon,
    records_to_lexicon,
)
from .loader import H5ADReferenceProvider, VisiumSectionProvider, load_h5ad, summarize_adata
from .validator import check_counts_data, validate_schema

__all__ = [
    "MarkerLexicon",
    "MarkerQuery",
    "lexicon_from_frame",
    "load_marker_lexicon",
    "records_to_lexicon",
    "H5ADReferenceProvider",
    "VisiumSectionProvider",
    "load_h5ad",
    "summarize_adata",
    "check_counts_data",
    "validate_schema",
]
