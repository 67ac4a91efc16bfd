"""Exception taxonomy.

Item- and record-level errors (``InferenceFailure``, ``InvalidCropGeometry``,
``UnknownBBoxFormat``) are caught where they happen and turned into counters or per-item
``error`` fields. ``DestinationNotSelected`` and ``WriterNotInitialized`` propagate.
"""
from __future__ import annotations


class FlorenceBatchError(Exception):
    """Base class for all florence_batch errors."""


class InferenceFailure(FlorenceBatchError):
    """Inference raised for a single batch item."""

    def __init__(self, filename: str, cause: BaseException) -> None:
        super().__init__(str(cause) or type(cause).__name__)
        self.filename = filename
        self.cause = cause


class InvalidCropGeometry(FlorenceBatchError):
    """A box has zero or negative width/height once clamped to the image."""

    def __init__(self, width: float, height: float) -> None:
        super().__init__(f"Invalid crop dimensions: {width}x{height}")
        self.width = width
        self.height = height


class UnknownBBoxFormat(FlorenceBatchError):
    """A detection record carries neither an axis box nor a quad box."""


class DestinationNotSelected(FlorenceBatchError):
    """The user declined to pick an output file or directory."""


class WriterNotInitialized(FlorenceBatchError):
    """A result writer was used out of order (before initialize or after finalize)."""
