from __future__ import annotations

import pytest

from conftest import image_bytes
from immobilier import storage
from immobilier.storage import PhotoStoreError


def test_safe_upload_ext():
    assert storage.safe_upload_ext(filename="Salon.JPG", content_type="image/jpeg") == ".jpg"
    assert storage.safe_upload_ext(filename="photo", content_type="image/webp") == ".webp"
    assert storage.safe_upload_ext(filename="weird.p!g", content_type="image/png") == ".png"


def test_photo_path_stays_inside_uploads(uploads_path):
    assert storage.photo_path("a.png") == str(uploads_path / "a.png")
    assert storage.photo_path("../a.png") is None
    assert storage.photo_path("sub/a.png") is None
    assert storage.photo_path("..") is None
    assert storage.photo_path("") is None


def test_looks_like_image():
    assert storage.looks_like_image(image_bytes())
    assert storage.looks_like_image(image_bytes(fmt="JPEG"))
    assert not storage.looks_like_image(b"")
    assert not storage.looks_like_image(b"definitely not an image")


def test_store_photos_preserves_order(uploads_path):
    items = [(image_bytes((i, i, i)), ".png") for i in range(5)]
    names = storage.store_photos(items)
    assert len(set(names)) == 5
    assert [(uploads_path / n).read_bytes() for n in names] == [raw for raw, _ in items]

    assert storage.remove_photos(names + ["gone.png", "../x"]) == 5
    assert list(uploads_path.iterdir()) == []


def test_store_photos_cleans_up_on_write_failure(uploads_path, monkeypatch):
    real_open = open
    calls = {"n": 0}

    def flaky_open(path, mode="r", *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 3:
            raise OSError("disk full")
        return real_open(path, mode, *args, **kwargs)

    monkeypatch.setattr(storage, "open", flaky_open, raising=False)
    with pytest.raises(PhotoStoreError):
        storage.store_photos([(image_bytes(), ".png")] * 4)
    assert list(uploads_path.iterdir()) == []
