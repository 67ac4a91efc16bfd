"""Streaming result writers.

Each writer receives results one at a time and writes them straight to disk, so a batch of
any size is never held in memory. Writers are single-consumer: ``write_result`` calls must
not overlap.
"""

from __future__ import annotations

import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Any, Callable, Optional

from .errors import DestinationNotSelected, WriterNotInitialized
from .logging import get_logger
from .schemas import OUTPUT_FORMATS, ResultItem
from .tabular import (
    AXIS_KEYS,
    QUAD_KEYS,
    dumps_compact,
    dumps_pretty,
    indent_block,
    serialize_row,
)

logger = get_logger(__name__)

__all__ = [
    "ResultWriter",
    "AggregateJSONWriter",
    "FlattenedCSVWriter",
    "PerItemFileWriter",
    "DestinationPicker",
    "create_writer",
    "suggested_name",
]

# (kind, suggested_name) -> chosen path, or None when the user cancels.
DestinationPicker = Callable[[str, str], Optional[Path]]


class ResultWriter(ABC):
    """Common lifecycle: ``initialize`` -> ``write_result``* -> ``finalize``."""

    def __init__(self) -> None:
        self.task: str | None = None
        self._initialized = False
        self._finalized = False

    def initialize(self, task: str) -> None:
        self.task = task
        self._open()
        self._initialized = True
        self._finalized = False

    def write_result(self, item: ResultItem) -> None:
        if not self._initialized or self._finalized:
            raise WriterNotInitialized("Writer not initialized")
        self._write(item)

    def finalize(self) -> None:
        if not self._initialized:
            raise WriterNotInitialized("Writer not initialized")
        if self._finalized:
            return
        self._close()
        self._finalized = True

    def record_for(self, item: ResultItem) -> dict[str, Any]:
        rec = item.record()
        if self.task is not None:
            rec["task"] = self.task
        return rec

    def __enter__(self) -> "ResultWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._initialized and not self._finalized:
            self.finalize()

    @abstractmethod
    def _open(self) -> None: ...

    @abstractmethod
    def _write(self, item: ResultItem) -> None: ...

    @abstractmethod
    def _close(self) -> None: ...


class _FileWriter(ResultWriter):
    def __init__(self, out_path: str | Path) -> None:
        super().__init__()
        self.out_path = Path(out_path)
        self._fh: IO[str] | None = None

    def _open(self) -> None:
        os.makedirs(self.out_path.parent, exist_ok=True)
        self._fh = open(self.out_path, "w", encoding="utf-8", newline="")

    def _close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
        logger.info(f"wrote {self.out_path}")


class AggregateJSONWriter(_FileWriter):
    """Write a single JSON array, one element at a time."""

    def _open(self) -> None:
        super()._open()
        assert self._fh is not None
        self._fh.write("[\n")
        self._is_first = True

    def _write(self, item: ResultItem) -> None:
        assert self._fh is not None
        # Serialize first: a failure must not leave a dangling separator behind.
        chunk = indent_block(dumps_pretty(self.record_for(item)))
        if not self._is_first:
            self._fh.write(",\n")
        self._fh.write(chunk)
        self._is_first = False
        self._fh.flush()

    def _close(self) -> None:
        if self._fh is not None:
            self._fh.write("\n]\n")
        super()._close()


def _has_boxes(result: Any, key: str) -> bool:
    return isinstance(result, dict) and result.get("labels") is not None and result.get(key) is not None


class FlattenedCSVWriter(_FileWriter):
    """Write one CSV row per detection (or per result when there are no detections).

    The first row written fixes the header for the whole file; columns that later rows carry
    but the header lacks are dropped.
    """

    def _open(self) -> None:
        super()._open()
        self.headers: list[str] | None = None
        self.row_id = 0

    def _next_id(self) -> int:
        rid = self.row_id
        self.row_id += 1
        return rid

    def flatten(self, item: ResultItem) -> list[dict[str, Any]]:
        result = item.result
        if _has_boxes(result, "quad_boxes"):
            rows = []
            for label, box in zip(result["labels"], result["quad_boxes"]):
                row = {"id": self._next_id(), "filename": item.filename, "label": label}
                row.update(zip(QUAD_KEYS, box))
                rows.append(row)
            return rows
        if _has_boxes(result, "bboxes"):
            rows = []
            for label, box in zip(result["labels"], result["bboxes"]):
                row = {"id": self._next_id(), "filename": item.filename, "label": label}
                row.update(zip(AXIS_KEYS, box))
                rows.append(row)
            return rows
        if isinstance(result, list):
            rows = []
            for entry in result:
                row = {"id": self._next_id()}
                if isinstance(entry, dict):
                    row.update((k, v) for k, v in entry.items() if k != "id")
                else:
                    row["result"] = entry
                rows.append(row)
            return rows
        if isinstance(result, dict):
            return [{"id": self._next_id(), "filename": item.filename, "result": dumps_compact(result)}]
        return [{"id": self._next_id(), "filename": item.filename, "result": result}]

    def _write(self, item: ResultItem) -> None:
        assert self._fh is not None
        for row in self.flatten(item):
            if self.headers is None:
                self.headers = list(row.keys())
                self._fh.write(",".join(self.headers) + "\n")
            dropped = [k for k in row if k not in self.headers]
            if dropped:
                logger.debug(f"{item.filename}: columns not in header dropped: {dropped}")
            self._fh.write(serialize_row(self.headers, row) + "\n")
        self._fh.flush()


class PerItemFileWriter(ResultWriter):
    """Write one ``<filename>.json`` per result into a directory."""

    def __init__(self, out_dir: str | Path) -> None:
        super().__init__()
        self.out_dir = Path(out_dir)

    def _open(self) -> None:
        os.makedirs(self.out_dir, exist_ok=True)

    def _write(self, item: ResultItem) -> None:
        path = self.out_dir / f"{item.filename}.json"
        with open(path, "w", encoding="utf-8") as f:
            f.write(dumps_pretty(self.record_for(item)))

    def _close(self) -> None:
        logger.info(f"outputs under {self.out_dir}")


# ----------------------- Destination acquisition -----------------------
def suggested_name(fmt: str) -> str:
    return f"florence2_results_{int(time.time() * 1000)}.{fmt}"


def _acquire(kind: str, name: str, destination: str | Path | None, picker: DestinationPicker | None) -> Path:
    if destination is None:
        if picker is None:
            raise DestinationNotSelected(f"no {kind} destination given")
        chosen = picker(kind, name)
        if chosen is None:
            raise DestinationNotSelected(f"no {kind} selected")
        destination = chosen
    path = Path(destination).expanduser()
    if kind == "file" and path.is_dir():
        path = path / name
    return path


def create_writer(
    fmt: str,
    task: str,
    destination: str | Path | None = None,
    picker: DestinationPicker | None = None,
) -> ResultWriter:
    """Build and initialize the writer for ``fmt`` (``json`` | ``csv`` | ``individual``).

    The destination is ``destination`` when given, otherwise whatever ``picker`` returns.
    A cancelled pick raises DestinationNotSelected before anything is written.
    """
    writer: ResultWriter
    if fmt == "json":
        writer = AggregateJSONWriter(_acquire("file", suggested_name("json"), destination, picker))
    elif fmt == "csv":
        writer = FlattenedCSVWriter(_acquire("file", suggested_name("csv"), destination, picker))
    elif fmt == "individual":
        writer = PerItemFileWriter(_acquire("directory", "", destination, picker))
    else:
        raise ValueError(f"Unknown format: {fmt} (expected one of {', '.join(OUTPUT_FORMATS)})")
    writer.initialize(task)
    return writer
