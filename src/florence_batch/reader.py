"""Image ingestion: a folder (walked recursively) or a text file listing image paths."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Generator, Iterable, Optional

from .schemas import ImageInput

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff"}


def _is_image(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in IMAGE_EXTS


def _iter_dir(dir_path: str) -> Generator[ImageInput, None, None]:
    for root, dirs, files in os.walk(dir_path):
        dirs.sort()
        for name in sorted(files):
            fp = os.path.join(root, name)
            if _is_image(fp):
                yield ImageInput(name=name, path=Path(fp))


def _iter_listfile(list_path: str) -> Generator[ImageInput, None, None]:
    with open(list_path, "r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s or s.startswith("#"):
                continue
            if _is_image(s):
                yield ImageInput(name=os.path.basename(s), path=Path(s))


def iter_images(inp: str | Path, limit: Optional[int] = None) -> Iterable[ImageInput]:
    """Yield images from a folder or list file, in a stable (sorted / listed) order."""
    inp = str(inp)
    count = 0
    if os.path.isdir(inp):
        it = _iter_dir(inp)
    elif os.path.isfile(inp):
        it = _iter_listfile(inp)
    else:
        raise FileNotFoundError(f"input not found: {inp}")

    for item in it:
        yield item
        count += 1
        if limit and count >= limit:
            break


def index_images(inp: str | Path) -> dict[str, Path]:
    """Map file name -> path for every image under ``inp`` (first occurrence wins)."""
    out: dict[str, Path] = {}
    for item in iter_images(inp):
        if item.path is not None:
            out.setdefault(item.name, item.path)
    return out
