from __future__ import annotations

import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from bgedit import io as io_mod
from bgedit.config import MAX_UPLOAD_BYTES
from bgedit.errors import UploadRejected


def _png_bytes(w: int = 12, h: int = 8, color=(200, 100, 50)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), color).save(buf, format="PNG")
    return buf.getvalue()


class _FakeResp:
    def __init__(self, payload: bytes, content_type: str = "image/png"):
        self._payload = payload
        self.headers = {"Content-Type": content_type}
        self.closed = False

    def raise_for_status(self) -> None:
        return None

    def iter_content(self, chunk_size: int = 1024):
        for i in range(0, len(self._payload), chunk_size):
            yield self._payload[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


def test_load_upload_decodes_rgba():
    upload = io_mod.load_upload(_png_bytes(), content_type="image/png", filename="p.png")
    assert upload.pixels.shape == (8, 12, 4)
    assert tuple(upload.pixels[0, 0]) == (200, 100, 50, 255)
    assert upload.size == (12, 8)


def test_rejects_non_image_content_type():
    with pytest.raises(UploadRejected, match="image file"):
        io_mod.load_upload(_png_bytes(), content_type="text/plain")


def test_content_type_guessed_from_filename():
    io_mod.validate_upload(b"x", filename="photo.JPG")
    with pytest.raises(UploadRejected):
        io_mod.validate_upload(b"x", filename="notes.txt")
    with pytest.raises(UploadRejected):
        io_mod.validate_upload(b"x")


def test_rejects_payload_over_five_megabytes():
    io_mod.validate_upload(b"\0" * MAX_UPLOAD_BYTES, content_type="image/png")
    with pytest.raises(UploadRejected, match="5MB"):
        io_mod.validate_upload(b"\0" * (MAX_UPLOAD_BYTES + 1), content_type="image/png")


def test_rejects_undecodable_image():
    with pytest.raises(UploadRejected):
        io_mod.load_upload(b"GIF89a-but-not-really", content_type="image/gif")


def test_load_image_from_path(tmp_path: Path):
    p = tmp_path / "in" / "shot.png"
    p.parent.mkdir(parents=True)
    p.write_bytes(_png_bytes(5, 7))
    upload = io_mod.load_image(str(p))
    assert upload.filename == "shot.png"
    assert upload.pixels.shape == (7, 5, 4)

    with pytest.raises(FileNotFoundError):
        io_mod.load_image(str(tmp_path / "missing.png"))


def test_fetch_image(monkeypatch):
    seen = {}

    def _fake_get(url, timeout=None, stream=None):
        seen["url"] = url
        seen["timeout"] = timeout
        return _FakeResp(_png_bytes(3, 3), content_type="image/png; charset=binary")

    monkeypatch.setenv("BGEDIT_HTTP_TIMEOUT_S", "3.5")
    monkeypatch.setattr(io_mod.requests, "get", _fake_get)

    upload = io_mod.fetch_image("https://example.com/pics/kitten.png?x=1")
    assert upload.filename == "kitten.png"
    assert upload.pixels.shape == (3, 3, 4)
    assert seen["timeout"] == 3.5


def test_fetch_image_enforces_limits(monkeypatch):
    monkeypatch.setattr(io_mod.requests, "get", lambda url, timeout=None, stream=None: _FakeResp(b"<html>", "text/html"))
    with pytest.raises(UploadRejected):
        io_mod.fetch_image("https://example.com/page")

    big = _FakeResp(b"\0" * (MAX_UPLOAD_BYTES + 10), "image/png")
    monkeypatch.setattr(io_mod.requests, "get", lambda url, timeout=None, stream=None: big)
    with pytest.raises(UploadRejected):
        io_mod.fetch_image("https://example.com/huge.png")
    assert big.closed


def test_iter_images_filters_extensions(tmp_path: Path):
    for name in ("b.png", "a.JPG", "notes.txt", "sub/c.webp"):
        p = tmp_path / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"")
    names = [p.relative_to(tmp_path).as_posix() for p in io_mod.iter_images(tmp_path)]
    assert names == ["a.JPG", "b.png", "sub/c.webp"]
