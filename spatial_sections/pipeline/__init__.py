"""Pipeline orchestration and artifact reporting."""

from .orchestrator import PipelineResult, SectionResult, run_pipeline, run_section, run_sections
from .reporting import emit_artifacts

__all__ = [
    "PipelineResult",
    "SectionResult",
    "run_pipeline",
    "run_section",
    "run_sections",
    "emit_artifacts",
]
