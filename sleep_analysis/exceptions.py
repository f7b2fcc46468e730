"""
Pipeline Errors
===============

Error taxonomy shared by every stage of the pipeline.

Every error carries the stage it was raised in and, where it applies, the
offending column and value so the CLI can report exactly what failed.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    stage = "pipeline"

    def __init__(
        self,
        message: str,
        column: Optional[str] = None,
        value: Any = None,
        stage: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.column = column
        self.value = value
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        details = []
        if self.column is not None:
            details.append(f"column={self.column!r}")
        if self.value is not None:
            details.append(f"value={self.value!r}")
        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message


class DataLoadError(PipelineError):
    """Source file is missing, unreadable, corrupt or empty."""

    stage = "load"


class ParseError(PipelineError):
    """A field could not be coerced or parsed."""

    stage = "clean"


class InsufficientDataError(PipelineError):
    """A stratum is too small to populate every partition."""

    stage = "split"


class UnseenLevelError(PipelineError):
    """A categorical level at prediction time was not observed during fit."""

    stage = "predict"


class LengthMismatchError(PipelineError, ValueError):
    """Observed and predicted sequences differ in length."""

    stage = "evaluate"


class EmptyInputError(PipelineError, ValueError):
    """Observed or predicted sequence is empty."""

    stage = "evaluate"
