from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlparse

import numpy as np
import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from .config import MAX_UPLOAD_BYTES, get_http_timeout_s
from .errors import UploadRejected

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}


@dataclass(frozen=True)
class Upload:
    data: bytes
    pixels: np.ndarray
    filename: Optional[str] = None

    @property
    def size(self):
        return int(self.pixels.shape[1]), int(self.pixels.shape[0])


def validate_upload(data: bytes, content_type: Optional[str] = None, filename: Optional[str] = None) -> None:
    """
    Enforce the upload contract: image/* only, at most 5 MB.
    """
    if content_type is None and filename:
        content_type, _ = mimetypes.guess_type(filename)
    if not content_type or not content_type.lower().startswith("image/"):
        raise UploadRejected("Please upload an image file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadRejected("File size must be less than 5MB")


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes to RGBA uint8 (H, W, 4), honouring EXIF orientation.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UploadRejected(f"Could not decode image: {e}") from e
    img = ImageOps.exif_transpose(img)
    return pil_to_numpy_rgba(img)


def pil_to_numpy_rgba(img: Image.Image) -> np.ndarray:
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError(f"Expected RGBA image array, got shape={arr.shape}")
    return arr


def load_upload(data: bytes, content_type: Optional[str] = None, filename: Optional[str] = None) -> Upload:
    validate_upload(data, content_type=content_type, filename=filename)
    return Upload(data=data, pixels=decode_image(data), filename=filename)


def load_image(path: str) -> Upload:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Could not read image: {path}")
    return load_upload(p.read_bytes(), filename=p.name)


def fetch_image(url: str) -> Upload:
    """
    Download an image over HTTP(S) under the same contract as a local upload.
    """
    resp = requests.get(url, timeout=get_http_timeout_s(), stream=True)
    try:
        resp.raise_for_status()
        content_type = (resp.headers.get("Content-Type") or "").split(";")[0].strip()
        chunks = []
        received = 0
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            received += len(chunk)
            if received > MAX_UPLOAD_BYTES:
                raise UploadRejected("File size must be less than 5MB")
            chunks.append(chunk)
    finally:
        resp.close()
    filename = Path(urlparse(url).path).name or None
    return load_upload(b"".join(chunks), content_type=content_type or None, filename=filename)


def iter_images(input_dir: Path) -> Iterator[Path]:
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in IMAGE_EXTS:
            yield p

