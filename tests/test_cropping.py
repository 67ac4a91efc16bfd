"""Tests for cropping detections out of source images."""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from florence_batch import cropping
from florence_batch.cropping import RegionExtractor
from florence_batch.schemas import AxisBox, CropStats, DetectionRecord, QuadBox
from florence_batch.tabular import load_detection_records


def _axis(image: str | None, xmin, ymin, xmax, ymax, **kw) -> DetectionRecord:
    return DetectionRecord(
        image=image, geometry=AxisBox(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax), **kw
    )


class TestRegionExtractor:
    def test_crops_saved_per_source_image(self, tmp_path: Path, make_image) -> None:
        records = [
            _axis("photo.jpg", 10, 10, 50, 40, label="cat", id=7),
            _axis("photo.jpg", 0, 0, 20, 20, label="dog"),
        ]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"photo.jpg": make_image()})

        assert stats == CropStats(saved=2, failed=0, skipped=0)
        first = tmp_path / "out" / "photo" / "photo_7.jpg"
        second = tmp_path / "out" / "photo" / "photo_1.jpg"
        with Image.open(first) as im:
            assert im.size == (40, 30)
            assert im.format == "JPEG"
        assert second.exists()

    def test_low_score_is_skipped(self, tmp_path: Path, make_image) -> None:
        records = [_axis("a.jpg", 10, 10, 50, 40, score=0.3)]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"a.jpg": make_image()})
        assert stats == CropStats(saved=0, failed=0, skipped=1)

    def test_score_at_threshold_is_kept(self, tmp_path: Path, make_image) -> None:
        records = [_axis("a.jpg", 10, 10, 50, 40, score=0.5)]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"a.jpg": make_image()})
        assert stats.saved == 1

    def test_missing_image_skips_whole_group_without_decoding(
        self, tmp_path: Path, make_image, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        decoded: list[object] = []
        original = RegionExtractor._decode

        def _spy(source):
            decoded.append(source)
            return original(source)

        monkeypatch.setattr(RegionExtractor, "_decode", staticmethod(_spy))
        records = [
            _axis("missing.jpg", 1, 1, 5, 5),
            _axis("missing.jpg", 2, 2, 6, 6),
            _axis("missing.jpg", 3, 3, 7, 7),
        ]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"other.jpg": make_image()})
        assert stats == CropStats(saved=0, failed=0, skipped=3)
        assert decoded == []

    def test_record_without_image_key_is_skipped(self, tmp_path: Path, make_image) -> None:
        records = [_axis(None, 1, 1, 5, 5), _axis("a.jpg", 1, 1, 5, 5)]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"a.jpg": make_image()})
        assert stats == CropStats(saved=1, failed=0, skipped=1)

    def test_unknown_bbox_format_is_skipped(self, tmp_path: Path, make_image) -> None:
        records = [DetectionRecord(image="a.jpg", label="caption")]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"a.jpg": make_image()})
        assert stats == CropStats(saved=0, failed=0, skipped=1)

    def test_invalid_geometry_fails_record_not_group(self, tmp_path: Path, make_image) -> None:
        degenerate = QuadBox(x1=5, y1=5, x2=5, y2=5, x3=5, y3=5, x4=5, y4=5)
        records = [
            DetectionRecord(image="a.jpg", geometry=degenerate),
            _axis("a.jpg", 500, 500, 600, 600),  # entirely outside a 100x80 image
            _axis("a.jpg", 10, 10, 30, 30),
        ]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"a.jpg": make_image()})
        assert stats == CropStats(saved=1, failed=2, skipped=0)
        assert (tmp_path / "out" / "a" / "a_2.jpg").exists()

    def test_quad_uses_bounding_rect(self, tmp_path: Path, make_image) -> None:
        quad = QuadBox(x1=20, y1=10, x2=40, y2=20, x3=20, y3=30, x4=0, y4=20)
        stats = RegionExtractor(tmp_path / "out").extract(
            [DetectionRecord(image="page.png", geometry=quad, id=3)], {"page.png": make_image()}
        )
        assert stats.saved == 1
        with Image.open(tmp_path / "out" / "page" / "page_3.jpg") as im:
            assert im.size == (40, 20)

    def test_box_clamped_to_image(self, tmp_path: Path, make_image) -> None:
        stats = RegionExtractor(tmp_path / "out").extract(
            [_axis("a.jpg", -10, -10, 500, 500)], {"a.jpg": make_image(60, 40)}
        )
        assert stats.saved == 1
        with Image.open(tmp_path / "out" / "a" / "a_0.jpg") as im:
            assert im.size == (60, 40)

    def test_write_failure_counts_as_failed(
        self, tmp_path: Path, make_image, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls = {"n": 0}
        original_save = Image.Image.save

        def _flaky_save(self, fp, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OSError("disk full")
            return original_save(self, fp, *args, **kwargs)

        monkeypatch.setattr(Image.Image, "save", _flaky_save)
        records = [_axis("a.jpg", 0, 0, 10, 10), _axis("a.jpg", 10, 10, 20, 20)]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"a.jpg": make_image()})
        assert stats == CropStats(saved=1, failed=1, skipped=0)

    def test_undecodable_image_fails_group(self, tmp_path: Path) -> None:
        broken = tmp_path / "broken.jpg"
        broken.write_bytes(b"nope")
        records = [_axis("broken.jpg", 0, 0, 10, 10), _axis("broken.jpg", 0, 0, 5, 5)]
        stats = RegionExtractor(tmp_path / "out").extract(records, {"broken.jpg": broken})
        assert stats == CropStats(saved=0, failed=2, skipped=0)

    def test_progress_once_per_group(self, tmp_path: Path, make_image) -> None:
        messages: list[tuple[int, int, str]] = []
        records = [
            _axis("a.jpg", 0, 0, 10, 10),
            _axis("a.jpg", 0, 0, 20, 20),
            _axis("gone.jpg", 0, 0, 10, 10),
        ]
        RegionExtractor(tmp_path / "out", on_progress=lambda *a: messages.append(a)).extract(
            records, {"a.jpg": make_image()}
        )
        assert messages == [(1, 2, "Processing a.jpg"), (2, 2, "Skipping gone.jpg (not found)")]

    def test_caller_image_not_closed(self, tmp_path: Path, make_image) -> None:
        source = make_image()
        RegionExtractor(tmp_path / "out").extract([_axis("a.jpg", 0, 0, 10, 10)], {"a.jpg": source})
        assert source.getpixel((0, 0)) == (120, 30, 200)

    def test_colliding_base_names_warn_on_overwrite(
        self, tmp_path: Path, make_image, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """a.jpg and a.png share the a/ folder; reusing an id rewrites the same crop."""
        warnings: list[str] = []
        monkeypatch.setattr(cropping.logger, "warning", warnings.append)
        records = [_axis("a.jpg", 0, 0, 10, 10, id=0), _axis("a.png", 0, 0, 20, 20, id=0)]
        images = {"a.jpg": make_image(), "a.png": make_image()}
        stats = RegionExtractor(tmp_path / "out").extract(records, images)

        assert stats.saved == 2
        assert len(warnings) == 1
        assert "overwriting" in warnings[0]
        with Image.open(tmp_path / "out" / "a" / "a_0.jpg") as im:
            assert im.size == (20, 20)


def test_confidence_gate_is_fixed() -> None:
    assert cropping.MIN_SCORE == 0.5
    assert cropping.JPEG_QUALITY == 95


def test_csv_export_to_crops(tmp_path: Path, create_test_images) -> None:
    """A CSV with a low-score row and a valid row, cropped from images on disk."""
    folder = create_test_images(["street.jpg"])
    csv_path = tmp_path / "det.csv"
    csv_path.write_text(
        "id,filename,label,score,xmin,ymin,xmax,ymax\n"
        "0,street.jpg,car,0.3,1,1,20,20\n"
        "1,street.jpg,bike,0.8,5,5,25,30\n",
        encoding="utf-8",
    )
    records = load_detection_records(csv_path)
    stats = RegionExtractor(tmp_path / "crops").extract(records, {"street.jpg": folder / "street.jpg"})
    assert stats == CropStats(saved=1, failed=0, skipped=1)
    assert (tmp_path / "crops" / "street" / "street_1.jpg").exists()
