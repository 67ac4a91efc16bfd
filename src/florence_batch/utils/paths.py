from __future__ import annotations

import os

__all__ = ["safe_stem", "base_name"]


def safe_stem(image_ref: str) -> str:
    """Derive a safe filename stem from a local path.

    - Use the basename without extension.
    - Replace path separators to avoid nested dirs; default to 'image'.
    """
    stem = os.path.splitext(os.path.basename(image_ref))[0] or "image"
    return stem.replace("/", "_").replace("\\", "_") or "image"


def base_name(filename: str) -> str:
    """Name of the crop directory for a source image: everything before the first '.'.

    ``photo.final.jpg`` -> ``photo``; a leading-dot or empty name falls back to ``safe_stem``.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    head = name.split(".", 1)[0]
    return head or safe_stem(name)
