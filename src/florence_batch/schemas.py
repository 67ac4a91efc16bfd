"""Pydantic models describing batch results, detection records and run configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

OUTPUT_FORMATS = ("json", "csv", "individual")

TASKS = (
    "<OD>",
    "<CAPTION>",
    "<DETAILED_CAPTION>",
    "<MORE_DETAILED_CAPTION>",
    "<DENSE_REGION_CAPTION>",
    "<OCR>",
    "<OCR_WITH_REGION>",
    "<CAPTION_TO_PHRASE_GROUNDING>",
)

# Tasks whose prompt is the task token followed by user text.
TASKS_WITH_INPUTS = ("<CAPTION_TO_PHRASE_GROUNDING>",)


class AxisBox(BaseModel):
    """Axis-aligned box in pixel xyxy format."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float


class QuadBox(BaseModel):
    """Quadrilateral given by four (x, y) vertices."""

    x1: float
    y1: float
    x2: float
    y2: float
    x3: float
    y3: float
    x4: float
    y4: float


Geometry = Union[AxisBox, QuadBox]


class DetectionRecord(BaseModel):
    """One detection read back from an exported CSV/JSON file.

    ``geometry`` is None when the row carries neither a complete axis box nor a complete
    quad box; the region extractor reports those as an unknown bbox format.
    """

    image: str | None = None
    label: str = "unknown"
    score: float | None = None
    geometry: Geometry | None = None
    id: int | None = None


class ResultItem(BaseModel):
    """Outcome of running one task on one image. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    filename: str
    task: str
    result: Any = None
    time: int | float = 0
    error: str | None = None
    # Per-label rows with rounded coordinates, only for results carrying ``bboxes``.
    detections: list[dict[str, Any]] | None = None

    def record(self) -> dict[str, Any]:
        """Exported shape: ``{filename, task, result, time, error?}``."""
        out: dict[str, Any] = {
            "filename": self.filename,
            "task": self.task,
            "result": self.result,
            "time": self.time,
        }
        if self.error:
            out["error"] = self.error
        return out


class ProgressEvent(BaseModel):
    current: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    filename: str


class BatchSummary(BaseModel):
    processed_count: int = 0
    failed_count: int = 0
    total_elapsed_time: float = 0.0


class CropStats(BaseModel):
    saved: int = 0
    failed: int = 0
    skipped: int = 0


class ImageInput(BaseModel):
    """An image to process: a display name plus a path or an already-decoded PIL image."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    path: Path | None = None
    image: Any = None


class RunConfig(BaseModel):
    input: Path
    task: str = "<OD>"
    text: str | None = None
    format: str = "json"
    out: Path | None = None
    limit: int | None = None
    model: str = "microsoft/Florence-2-base-ft"
    device: str = "auto"
    max_new_tokens: int = 128

    @field_validator("task")
    @classmethod
    def _known_task(cls, v: str) -> str:  # noqa: D401
        if v not in TASKS:
            raise ValueError(f"task must be one of {', '.join(TASKS)}")
        return v

    @field_validator("format")
    @classmethod
    def _known_format(cls, v: str) -> str:  # noqa: D401
        if v not in OUTPUT_FORMATS:
            raise ValueError(f"format must be one of {', '.join(OUTPUT_FORMATS)}")
        return v

    @field_validator("max_new_tokens")
    @classmethod
    def _tokens_positive(cls, v: int) -> int:  # noqa: D401
        if v <= 0:
            raise ValueError("max_new_tokens must be > 0")
        return v

    @field_validator("limit")
    @classmethod
    def _limit_positive(cls, v: int | None) -> int | None:  # noqa: D401
        if v is not None and v <= 0:
            raise ValueError("limit must be > 0")
        return v
