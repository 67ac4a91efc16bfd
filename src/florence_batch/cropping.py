"""Crop detected regions out of their source images.

Records are grouped by source image; each source image is decoded once, every record in its
group is cropped and saved as ``<out>/<base>/<base>_<id or index>.jpg``, and the decoded
image is released before the next group. Failures are counted per record.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterable, Mapping, Union

from PIL import Image

from .errors import UnknownBBoxFormat
from .geometry import clamp, crop_dimensions, pixel_box, to_axis_box
from .logging import get_logger
from .schemas import CropStats, DetectionRecord
from .utils.images import open_rgb
from .utils.paths import base_name

logger = get_logger(__name__)

__all__ = ["RegionExtractor", "MIN_SCORE", "JPEG_QUALITY"]

MIN_SCORE = 0.5
JPEG_QUALITY = 95

ImageSource = Union[str, Path, Image.Image]
CropProgress = Callable[[int, int, str], None]


class RegionExtractor:
    def __init__(self, output_dir: str | Path, on_progress: CropProgress | None = None) -> None:
        self.output_dir = Path(output_dir)
        self.on_progress = on_progress
        self._dirs: dict[str, Path] = {}

    def _progress(self, current: int, total: int, message: str) -> None:
        if self.on_progress:
            self.on_progress(current, total, message)

    def _dir_for(self, base: str) -> Path:
        out = self._dirs.get(base)
        if out is None:
            out = self.output_dir / base
            os.makedirs(out, exist_ok=True)
            self._dirs[base] = out
        return out

    @staticmethod
    def _lookup(images: Mapping[str, ImageSource], filename: str) -> ImageSource | None:
        source = images.get(filename)
        if source is None:
            source = images.get(os.path.basename(filename.replace("\\", "/")))
        return source

    @staticmethod
    def _decode(source: ImageSource) -> Image.Image:
        # Always a private copy, so it can be closed once the group is done.
        if isinstance(source, Image.Image):
            return source.convert("RGB")
        return open_rgb(source)

    def extract(
        self,
        records: Iterable[DetectionRecord],
        images: Mapping[str, ImageSource],
    ) -> CropStats:
        stats = CropStats()
        groups: dict[str, list[DetectionRecord]] = {}
        for rec in records:
            if not rec.image:
                stats.skipped += 1
                continue
            groups.setdefault(rec.image, []).append(rec)

        total = len(groups)
        for current, (filename, group) in enumerate(groups.items(), start=1):
            source = self._lookup(images, filename)
            if source is None:
                self._progress(current, total, f"Skipping {filename} (not found)")
                stats.skipped += len(group)
                continue
            self._progress(current, total, f"Processing {filename}")
            try:
                image = self._decode(source)
            except Exception as e:  # noqa: BLE001
                logger.error(f"Error processing {filename}: {e}")
                stats.failed += len(group)
                continue
            try:
                self._crop_group(filename, image, group, stats)
            finally:
                image.close()

        logger.info(f"crops saved={stats.saved} failed={stats.failed} skipped={stats.skipped}")
        return stats

    def _crop_group(
        self,
        filename: str,
        image: Image.Image,
        group: list[DetectionRecord],
        stats: CropStats,
    ) -> None:
        base = base_name(filename)
        width, height = image.size
        for index, rec in enumerate(group):
            if rec.score is not None and rec.score < MIN_SCORE:
                stats.skipped += 1
                continue
            try:
                box = to_axis_box(rec.geometry)
            except UnknownBBoxFormat:
                logger.warning(f"skipping record {index} of {filename}: unknown bbox format")
                stats.skipped += 1
                continue
            try:
                clamped = clamp(box, width, height)
                crop_dimensions(clamped)
                region = image.crop(pixel_box(clamped))
                suffix = rec.id if rec.id is not None else index
                out_path = self._dir_for(base) / f"{base}_{suffix}.jpg"
                if out_path.exists():
                    logger.warning(f"overwriting {out_path} with bbox {index} from {filename}")
                region.save(out_path, format="JPEG", quality=JPEG_QUALITY)
                stats.saved += 1
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Error cropping bbox {index} from {filename}: {e}")
                stats.failed += 1
