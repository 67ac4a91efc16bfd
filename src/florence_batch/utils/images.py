from __future__ import annotations

from pathlib import Path
from typing import Any

from PIL import Image

__all__ = [
    "load_image",
    "open_rgb",
]


def open_rgb(path: str | Path) -> Image.Image:
    """Decode an image file fully into memory as RGB and release the file handle."""
    with Image.open(path) as im:
        return im.convert("RGB")


def load_image(item: Any) -> Image.Image:
    """Return an RGB PIL image for an ``ImageInput`` (or anything with ``image``/``path``)."""
    image = getattr(item, "image", None)
    if isinstance(image, Image.Image):
        return image.convert("RGB") if image.mode != "RGB" else image
    path = getattr(item, "path", None)
    if path:
        return open_rgb(path)
    raise ValueError("item must include 'image' or 'path'")
