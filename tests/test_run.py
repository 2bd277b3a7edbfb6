from __future__ import annotations

import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

import run
from bgedit import io as io_mod
from bgedit.export import decode_png
from bgedit.io import load_upload


def _write_png(path: Path, arr: np.ndarray) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(arr).save(path, format="PNG")


def _noise_foreground(h: int, w: int) -> np.ndarray:
    rng = np.random.default_rng(3)
    fg = rng.integers(0, 256, size=(h, w, 4), dtype=np.uint8)
    fg[..., 3] = 255
    fg[:, : w // 2, 3] = 0
    return fg


class _RightHalfRemover:
    def __init__(self, model_spec=None):
        self.model_spec = model_spec

    def remove(self, image_bytes, hint=None, on_progress=None):
        rgba = np.array(Image.open(io.BytesIO(image_bytes)).convert("RGBA"))
        rgba[:, : rgba.shape[1] // 2, 3] = 0
        buf = io.BytesIO()
        Image.fromarray(rgba).save(buf, format="PNG")
        return buf.getvalue()


def test_foreground_png_is_not_held_to_upload_limit(tmp_path, monkeypatch):
    fg = _noise_foreground(32, 32)
    _write_png(tmp_path / "fg" / "sub" / "cat.png", fg)
    monkeypatch.setattr(io_mod, "MAX_UPLOAD_BYTES", 256)

    loaded = run.foreground_for(Path("sub/cat.jpg"), tmp_path / "fg")
    assert np.array_equal(loaded, fg)

    with pytest.raises(FileNotFoundError):
        run.foreground_for(Path("dog.jpg"), tmp_path / "fg")


def test_cli_renders_with_large_foreground_pngs(tmp_path, monkeypatch):
    original = np.zeros((32, 32, 3), dtype=np.uint8)
    original[...] = (10, 20, 30)
    _write_png(tmp_path / "in" / "cat.png", original)
    fg = _noise_foreground(32, 32)
    _write_png(tmp_path / "fg" / "cat.png", fg)
    assert (tmp_path / "fg" / "cat.png").stat().st_size > 1000 > (tmp_path / "in" / "cat.png").stat().st_size
    monkeypatch.setattr(io_mod, "MAX_UPLOAD_BYTES", 1000)

    code = run.main(
        [
            "--input", str(tmp_path / "in"),
            "--output", str(tmp_path / "out"),
            "--foreground-dir", str(tmp_path / "fg"),
            "--background", "#000000",
        ]
    )

    assert code == 0
    out = decode_png((tmp_path / "out" / "cat_removebg.png").read_bytes())
    assert tuple(out[0, 0]) == (0, 0, 0, 255)
    assert np.array_equal(out[:, 16:], fg[:, 16:])


def test_cli_processes_urls(tmp_path, monkeypatch):
    buf = io.BytesIO()
    Image.new("RGB", (12, 6), (200, 0, 0)).save(buf, format="PNG")
    fetched = []

    def _fake_fetch(url):
        fetched.append(url)
        return load_upload(buf.getvalue(), content_type="image/png", filename="photo.png")

    monkeypatch.setattr(run, "fetch_image", _fake_fetch)
    monkeypatch.setattr(run, "MattingRemover", _RightHalfRemover)

    code = run.main(["--url", "https://example.com/photo.png", "--output", str(tmp_path), "--bw"])

    assert code == 0
    assert fetched == ["https://example.com/photo.png"]
    out = decode_png((tmp_path / "photo_removebg.png").read_bytes())
    assert tuple(out[0, 11]) == (200, 0, 0, 255)
    assert out[0, 0, 0] == out[0, 0, 1] == out[0, 0, 2]


def test_cli_requires_a_source(tmp_path):
    with pytest.raises(SystemExit):
        run.main(["--output", str(tmp_path)])
