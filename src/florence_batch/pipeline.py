"""Batch driver: one image at a time through the inference engine and into a result writer."""
from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from PIL import Image

from .errors import InferenceFailure
from .geometry import round_half_up
from .logging import get_logger
from .schemas import BatchSummary, ImageInput, ProgressEvent, ResultItem
from .utils.images import load_image, open_rgb
from .writer import ResultWriter

logger = get_logger(__name__)

__all__ = [
    "InferenceEngine",
    "BatchRunner",
    "SingleImageSession",
    "flatten_detections",
]


class InferenceEngine(Protocol):
    """What the runner needs from a model: reusable preprocessing plus per-task inference."""

    def prepare(self, image: Image.Image) -> Any: ...

    def infer(self, prepared: Any, task: str, text: str | None = None) -> Any: ...


def flatten_detections(result: Any, image_name: str) -> list[dict[str, Any]] | None:
    """Per-label rows with integer box coordinates, for results that carry ``bboxes``."""
    if not isinstance(result, dict) or not result.get("bboxes"):
        return None
    labels = result.get("labels") or []
    rows: list[dict[str, Any]] = []
    for idx, bbox in enumerate(result["bboxes"]):
        rows.append(
            {
                "label": labels[idx] if idx < len(labels) else "",
                "xmin": round_half_up(bbox[0]),
                "ymin": round_half_up(bbox[1]),
                "xmax": round_half_up(bbox[2]),
                "ymax": round_half_up(bbox[3]),
                "image": image_name,
            }
        )
    return rows


def _elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000.0


class BatchRunner:
    """Run one task over a list of images, streaming every result into a writer.

    A failing image never stops the batch: it is written as a result with ``error`` set and
    ``time == 0``. The writer is finalized after the last item.
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"

    def __init__(
        self,
        engine: InferenceEngine,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        on_complete: Callable[[BatchSummary], None] | None = None,
    ) -> None:
        self.engine = engine
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.state = self.IDLE

    def process_item(self, item: ImageInput, task: str, text: str | None = None) -> ResultItem:
        t0 = time.perf_counter()
        try:
            image = load_image(item)
            prepared = self.engine.prepare(image)
            result = self.engine.infer(prepared, task, text)
        except Exception as e:  # noqa: BLE001
            failure = InferenceFailure(item.name, e)
            logger.error(f"failed processing {item.name}: {failure}")
            return ResultItem(filename=item.name, task=task, result=None, time=0, error=str(failure))
        return ResultItem(
            filename=item.name,
            task=task,
            result=result,
            time=_elapsed_ms(t0),
            detections=flatten_detections(result, item.name),
        )

    def run(
        self,
        items: Iterable[ImageInput],
        task: str,
        writer: ResultWriter,
        text: str | None = None,
    ) -> BatchSummary:
        if self.state == self.RUNNING:
            raise RuntimeError("batch already running")
        items = list(items)
        total = len(items)
        self.state = self.RUNNING
        logger.info(f"🚀 start batch task={task} images={total}")
        t_start = time.perf_counter()
        processed = failed = 0
        try:
            for idx, item in enumerate(items):
                if self.on_progress:
                    self.on_progress(ProgressEvent(current=idx + 1, total=total, filename=item.name))
                rec = self.process_item(item, task, text)
                if rec.error:
                    failed += 1
                else:
                    processed += 1
                writer.write_result(rec)
            writer.finalize()
        except BaseException:
            self.state = self.IDLE
            raise
        summary = BatchSummary(
            processed_count=processed,
            failed_count=failed,
            total_elapsed_time=_elapsed_ms(t_start),
        )
        self.state = self.COMPLETE
        logger.info(
            f"📊 batch complete: {processed}/{total} processed, {failed} failed, "
            f"{summary.total_elapsed_time / 1000:.1f}s"
        )
        if self.on_complete:
            self.on_complete(summary)
        return summary


class SingleImageSession:
    """Interactive mode for one image: no writer, vision inputs reused across tasks.

    The processed vision input is computed on the first ``run`` after ``load`` and kept
    until ``load`` is called with another image or ``reset`` is called.
    """

    def __init__(self, engine: InferenceEngine) -> None:
        self.engine = engine
        self.image: Image.Image | None = None
        self.name: str | None = None
        self._vision_inputs: Any = None

    @property
    def has_cached_inputs(self) -> bool:
        return self._vision_inputs is not None

    def load(self, image: Image.Image | str | Path, name: str | None = None) -> None:
        if isinstance(image, Image.Image):
            self.image = image.convert("RGB") if image.mode != "RGB" else image
            self.name = name or "image"
        else:
            self.image = open_rgb(image)
            self.name = name or Path(image).name
        self.reset()

    def reset(self) -> None:
        self._vision_inputs = None

    def run(self, task: str, text: str | None = None) -> ResultItem:
        if self.image is None or self.name is None:
            raise ValueError("no image loaded")
        t0 = time.perf_counter()
        try:
            if self._vision_inputs is None:
                self._vision_inputs = self.engine.prepare(self.image)
            result = self.engine.infer(self._vision_inputs, task, text)
        except Exception as e:
            raise InferenceFailure(self.name, e) from e
        return ResultItem(
            filename=self.name,
            task=task,
            result=result,
            time=_elapsed_ms(t0),
            detections=flatten_detections(result, self.name),
        )
