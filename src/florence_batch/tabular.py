"""CSV and JSON text conventions shared by the exporters and the crop importer.

CSV follows RFC4180-style quoting: fields holding a comma or a double quote are wrapped in
quotes and inner quotes are doubled. The parser splits the text into lines *before* scanning
quotes, so a raw newline inside a quoted field is not supported.
"""

from __future__ import annotations

import json
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping

from .logging import get_logger
from .schemas import AxisBox, DetectionRecord, QuadBox

logger = get_logger(__name__)

__all__ = [
    "parse_csv",
    "split_csv_line",
    "serialize_value",
    "serialize_row",
    "serialize_rows",
    "dumps_pretty",
    "dumps_compact",
    "indent_block",
    "load_detection_records",
    "records_from_rows",
]

_NUMBER_RE = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)$")

AXIS_KEYS = ("xmin", "ymin", "xmax", "ymax")
QUAD_KEYS = ("x1", "y1", "x2", "y2", "x3", "y3", "x4", "y4")


def _parse_value(raw: str) -> str | int | float:
    value = raw.strip()
    if _NUMBER_RE.match(value):
        if "." in value:
            return float(value)
        return int(value)
    return value


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line into raw (unquoted, untrimmed) field strings."""
    fields: list[str] = []
    buf: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and line[i + 1] == '"':
                    buf.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                buf.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == ",":
            fields.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append("".join(buf))
    return fields


def parse_csv(text: str) -> list[dict[str, str | int | float]]:
    """Parse CSV text into one dict per data row, keyed by the trimmed header names.

    Numeric-looking fields become ``int``/``float``; everything else is a trimmed string.
    Missing trailing fields are empty strings and blank lines are ignored.
    """
    lines = [ln for ln in text.strip().splitlines() if ln.strip()]
    if not lines:
        return []
    headers = [h.strip() for h in split_csv_line(lines[0])]
    rows: list[dict[str, str | int | float]] = []
    for line in lines[1:]:
        values = split_csv_line(line)
        row: dict[str, str | int | float] = {}
        for idx, header in enumerate(headers):
            row[header] = _parse_value(values[idx]) if idx < len(values) else ""
        rows.append(row)
    return rows


def dumps_compact(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _plain_float(value: float) -> str:
    """Positional notation for floats, so the parser reads them back as numbers."""
    text = repr(value)
    if "e" not in text and "E" not in text:
        return text
    text = format(Decimal(text), "f")
    return text if "." in text else text + ".0"


def serialize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        value = dumps_compact(value)
    if isinstance(value, str):
        if "," in value or '"' in value:
            return '"' + value.replace('"', '""') + '"'
        return value
    if isinstance(value, float):
        return _plain_float(value)
    return str(value)


def serialize_row(headers: Iterable[str], row: Mapping[str, Any]) -> str:
    return ",".join(serialize_value(row.get(h)) for h in headers)


def serialize_rows(headers: list[str], rows: Iterable[Mapping[str, Any]]) -> str:
    lines = [",".join(headers)]
    lines.extend(serialize_row(headers, r) for r in rows)
    return "\n".join(lines) + "\n"


def dumps_pretty(obj: Any) -> str:
    """Two-space indented JSON, non-ASCII kept as is."""
    return json.dumps(obj, ensure_ascii=False, indent=2)


def indent_block(text: str, prefix: str = "  ") -> str:
    """Prefix the first line and every line after a newline, for nesting inside an array."""
    return prefix + text.replace("\n", "\n" + prefix)


# ----------------------- Detection import -----------------------
def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER_RE.match(value.strip()):
        return float(value.strip())
    return None


def _geometry_from_row(row: Mapping[str, Any]) -> AxisBox | QuadBox | None:
    """Exactly one complete geometry shape, or None when there is none or both."""
    quad = [_as_number(row.get(k)) for k in QUAD_KEYS]
    axis = [_as_number(row.get(k)) for k in AXIS_KEYS]
    has_quad = all(v is not None for v in quad)
    has_axis = all(v is not None for v in axis)
    if has_quad and has_axis:
        logger.debug("row carries both quad and axis coordinates; treating as unknown geometry")
        return None
    if has_quad:
        return QuadBox(**dict(zip(QUAD_KEYS, quad)))
    if has_axis:
        return AxisBox(**dict(zip(AXIS_KEYS, axis)))
    return None


def _record_from_row(row: Mapping[str, Any]) -> DetectionRecord:
    image = row.get("image") or row.get("filename")
    score = _as_number(row.get("score"))
    rid = _as_number(row.get("id"))
    label = row.get("label")
    return DetectionRecord(
        image=str(image) if image not in (None, "") else None,
        label=str(label) if label not in (None, "") else "unknown",
        score=score,
        geometry=_geometry_from_row(row),
        id=int(rid) if rid is not None and float(rid).is_integer() else None,
    )


def _rows_from_result(filename: Any, result: Any) -> list[dict[str, Any]]:
    """Expand one exported ``result`` payload into per-detection rows."""
    if isinstance(result, list):
        rows = []
        for entry in result:
            if isinstance(entry, dict):
                row = dict(entry)
                row.setdefault("filename", filename)
                rows.append(row)
        return rows
    if not isinstance(result, dict):
        return []
    labels = result.get("labels") or []
    if result.get("quad_boxes"):
        return [
            {"filename": filename, "label": lbl, **dict(zip(QUAD_KEYS, box))}
            for lbl, box in zip(labels, result["quad_boxes"])
        ]
    if result.get("bboxes"):
        scores = result.get("scores") or []
        rows = []
        for idx, (lbl, box) in enumerate(zip(labels, result["bboxes"])):
            row = {"filename": filename, "label": lbl, **dict(zip(AXIS_KEYS, box))}
            if idx < len(scores):
                row["score"] = scores[idx]
            rows.append(row)
        return rows
    return []


def records_from_rows(rows: Iterable[Mapping[str, Any]]) -> list[DetectionRecord]:
    return [_record_from_row(r) for r in rows]


def load_detection_records(path: str | Path) -> list[DetectionRecord]:
    """Read detection records from a CSV export or a JSON export.

    JSON may be a flat list of detection rows, or an aggregate export whose items carry a
    ``result`` with ``labels`` plus ``bboxes``/``quad_boxes``.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() != ".json":
        records = records_from_rows(parse_csv(text))
        logger.info(f"loaded {len(records)} detection rows from {path}")
        return records

    data = json.loads(text)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array in {path}")
    rows: list[dict[str, Any]] = []
    for entry in data:
        if not isinstance(entry, dict):
            logger.warning(f"skipping non-object entry in {path}: {type(entry).__name__}")
            continue
        if "result" in entry and "task" in entry:
            rows.extend(_rows_from_result(entry.get("filename"), entry.get("result")))
        else:
            rows.append(entry)
    records = records_from_rows(rows)
    logger.info(f"loaded {len(records)} detection rows from {path}")
    return records
