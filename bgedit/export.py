from __future__ import annotations

import io
import itertools
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import numpy as np
from PIL import Image

from .config import ARTIFACT_SCHEME, DEFAULT_DOWNLOAD_NAME, DOWNLOAD_SUFFIX
from .errors import EncodingError
from .surface import RasterSurface


def download_filename(original_filename: Optional[str]) -> str:
    """
    "<basename>_removebg.png" for a known upload name, else the generic default.

    Example: "holiday/beach.photo.jpg" -> "beach_removebg.png"
    """
    if not original_filename:
        return DEFAULT_DOWNLOAD_NAME
    stem = Path(original_filename).name.split(".")[0]
    if not stem:
        return DEFAULT_DOWNLOAD_NAME
    return f"{stem}{DOWNLOAD_SUFFIX}"


def decode_png(data: bytes) -> np.ndarray:
    """Decode PNG bytes to an RGBA uint8 (H, W, 4) array."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, ValueError) as e:
        raise EncodingError(f"Could not decode PNG artifact: {e}") from e
    return np.array(img.convert("RGBA"), dtype=np.uint8)


@dataclass(frozen=True)
class OutputArtifact:
    handle: str
    png: bytes
    width: int
    height: int
    filename: str = DEFAULT_DOWNLOAD_NAME

    def decode(self) -> np.ndarray:
        return decode_png(self.png)

    def save(self, out_path: str) -> None:
        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(self.png)


class ArtifactStore:
    """
    In-memory registry of encoded outputs addressed by handle.

    Handles stay resolvable until released; releasing twice is a no-op.
    """

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def publish(self, surface: RasterSurface, filename: Optional[str] = None) -> OutputArtifact:
        png = surface.encode_png()
        with self._lock:
            handle = f"{ARTIFACT_SCHEME}{next(self._ids)}"
            self._blobs[handle] = png
        return OutputArtifact(
            handle=handle,
            png=png,
            width=surface.width,
            height=surface.height,
            filename=download_filename(filename),
        )

    def resolve(self, handle: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[handle]
            except KeyError:
                raise KeyError(f"Unknown or released artifact handle: {handle}") from None

    def release(self, handle: str) -> None:
        with self._lock:
            self._blobs.pop(handle, None)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)
