"""Exceptions raised by pipeline stages."""

from typing import Optional


class PipelineError(Exception):
    """Base class for stage failures.

    Parameters
    ----------
    stage : str
        Name of the stage that failed (e.g. ``"quality_control"``).
    cause : str
        Human-readable description of what went wrong.
    """

    def __init__(self, stage: str, cause: str):
        self.stage = stage
        self.cause = cause
        super().__init__(f"[{stage}] {cause}")


# Input-contract violations


class SpotAxisMismatchError(PipelineError):
    """Spot ids differ between expression, metadata, coordinates or embeddings."""


class EmptyDatasetError(PipelineError):
    """A stage received, or would produce, a dataset without spots."""


class DegenerateReferenceError(PipelineError):
    """Reference profile matrix is rank-deficient for the selected markers."""


# Threshold / selection failures


class InsufficientVarianceExplainedError(PipelineError):
    """No number of computed components reaches the variance target."""

    def __init__(self, stage: str, cause: str, reached: Optional[float] = None):
        self.reached = reached
        super().__init__(stage, cause)


class NoAnchorsFoundError(PipelineError):
    """No shared features or no mutual-nearest-neighbour pairs."""


class InsufficientSpotsError(PipelineError):
    """Too few spots to build the requested spatial neighbourhood."""


# External collaborators


class DataUnavailableError(PipelineError):
    """Raw data, reference atlas or marker lexicon could not be loaded."""


class StageTimeoutError(PipelineError):
    """A section branch did not finish within its timeout."""
