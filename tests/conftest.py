"""Shared test fixtures for florence-batch tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from florence_batch.schemas import ImageInput


class FakeEngine:
    """Stand-in for Florence2Model: no weights, deterministic outputs.

    ``fail_on`` holds 1-based call numbers of ``infer`` that should raise.
    """

    def __init__(self, result: Any = None, fail_on: set[int] | None = None) -> None:
        self.result = result if result is not None else {
            "labels": ["cat", "dog"],
            "bboxes": [[10.4, 5.5, 40.6, 30.0], [50, 10, 90, 60]],
        }
        self.fail_on = fail_on or set()
        self.prepare_calls = 0
        self.infer_calls: list[tuple[str, str | None]] = []

    def prepare(self, image: Image.Image) -> dict[str, Any]:
        self.prepare_calls += 1
        return {"size": image.size}

    def infer(self, prepared: Any, task: str, text: str | None = None) -> Any:
        self.infer_calls.append((task, text))
        if len(self.infer_calls) in self.fail_on:
            raise RuntimeError("model exploded")
        if task == "<CAPTION>":
            return "a cat next to a dog"
        return self.result


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_image():
    """Build an in-memory RGB image."""

    def _make(width: int = 100, height: int = 80, color=(120, 30, 200)) -> Image.Image:
        return Image.new("RGB", (width, height), color=color)

    return _make


@pytest.fixture
def image_inputs(make_image) -> list[ImageInput]:
    """Three in-memory images named like files."""
    return [ImageInput(name=f"img_{i}.jpg", image=make_image()) for i in range(3)]


@pytest.fixture
def create_test_images(tmp_path: Path, make_image):
    """Write images of the given names into ``tmp_path / 'images'``."""

    def _create(names: list[str], size: tuple[int, int] = (100, 80)) -> Path:
        folder = tmp_path / "images"
        folder.mkdir(exist_ok=True)
        for name in names:
            make_image(*size).save(folder / name)
        return folder

    return _create
