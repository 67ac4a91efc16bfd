from pathlib import Path

import pytest

from florence_batch.reader import index_images, iter_images
from florence_batch.utils.images import load_image
from florence_batch.utils.paths import base_name, safe_stem
from florence_batch.schemas import ImageInput


def test_safe_stem_local_path():
    assert safe_stem("/tmp/foo/bar/baz.jpg") == "baz"


def test_safe_stem_separators():
    # Slashes/backslashes turned into underscores; basename without extension preserved
    assert safe_stem("a/b\\c.jpg") == "b_c"


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("photo.jpg", "photo"),
        ("photo.final.jpg", "photo"),
        ("dir/sub/cat.png", "cat"),
        ("C:\\images\\dog.jpeg", "dog"),
        ("noext", "noext"),
    ],
)
def test_base_name(filename: str, expected: str):
    assert base_name(filename) == expected


def test_iter_images_folder_sorted_and_limited(create_test_images):
    folder = create_test_images(["c.png", "a.jpg", "b.jpg"])
    (folder / "notes.txt").write_text("x")
    names = [i.name for i in iter_images(folder)]
    assert names == ["a.jpg", "b.jpg", "c.png"]
    assert [i.name for i in iter_images(folder, limit=2)] == ["a.jpg", "b.jpg"]


def test_iter_images_list_file(tmp_path: Path, create_test_images):
    folder = create_test_images(["a.jpg"])
    lst = tmp_path / "list.txt"
    lst.write_text(f"# comment\n{folder / 'a.jpg'}\n\nreadme.md\n")
    items = list(iter_images(lst))
    assert [i.name for i in items] == ["a.jpg"]


def test_iter_images_missing(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        list(iter_images(tmp_path / "missing"))


def test_index_images(create_test_images):
    folder = create_test_images(["a.jpg", "b.png"])
    assert set(index_images(folder)) == {"a.jpg", "b.png"}


def test_load_image_from_path_and_memory(create_test_images, make_image):
    folder = create_test_images(["a.jpg"], size=(10, 6))
    assert load_image(ImageInput(name="a.jpg", path=folder / "a.jpg")).size == (10, 6)
    gray = make_image().convert("L")
    assert load_image(ImageInput(name="g", image=gray)).mode == "RGB"
    with pytest.raises(ValueError):
        load_image(ImageInput(name="none"))
