from __future__ import annotations

import io
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageColor

from .config import get_max_megapixels
from .errors import AllocationError, EncodingError, SurfaceUnavailable

RGBA = Tuple[int, int, int, int]


class CompositeMode(str, Enum):
    SOURCE_OVER = "source-over"
    DESTINATION_OUT = "destination-out"
    DESTINATION_IN = "destination-in"


def parse_color(color: Union[str, Tuple[int, ...]]) -> RGBA:
    """
    Resolve a CSS-like colour ("#rgb", "#rrggbb", "#rrggbbaa", names, "rgb()") to RGBA8.
    """
    if isinstance(color, str):
        return ImageColor.getcolor(color, "RGBA")  # type: ignore[return-value]
    values = tuple(int(c) for c in color)
    if len(values) == 3:
        values = values + (255,)
    if len(values) != 4 or any(c < 0 or c > 255 for c in values):
        raise ValueError(f"Expected RGB(A) tuple with 0..255 components, got {color!r}")
    return values  # type: ignore[return-value]


def as_rgba_array(image) -> np.ndarray:
    """
    Normalize a RasterSurface, PIL image or ndarray to a uint8 (H, W, 4) array.
    """
    if isinstance(image, RasterSurface):
        return image.pixels
    if isinstance(image, Image.Image):
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return np.asarray(image, dtype=np.uint8)

    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        raise ValueError(f"Expected uint8 pixels, got dtype={arr.dtype}")
    if arr.ndim == 2:
        arr = np.dstack([arr, arr, arr, np.full(arr.shape, 255, dtype=np.uint8)])
    elif arr.ndim == 3 and arr.shape[2] == 3:
        arr = np.dstack([arr, np.full(arr.shape[:2], 255, dtype=np.uint8)])
    elif arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError(f"Expected (H,W), (H,W,3) or (H,W,4) image, got shape={arr.shape}")
    return arr


def _composite(dst: np.ndarray, src: np.ndarray, mode: CompositeMode) -> None:
    """
    Porter-Duff composite of straight-alpha ``src`` into ``dst`` (same shape), in place.
    """
    sa = src[..., 3:4].astype(np.float64) / 255.0
    da = dst[..., 3:4].astype(np.float64) / 255.0

    if mode == CompositeMode.SOURCE_OVER:
        out_a = sa + da * (1.0 - sa)
        num = src[..., :3] * sa + dst[..., :3] * (da * (1.0 - sa))
        out_c = np.divide(num, out_a, out=np.zeros_like(num), where=out_a > 0)
    elif mode == CompositeMode.DESTINATION_OUT:
        out_a = da * (1.0 - sa)
        out_c = dst[..., :3].astype(np.float64)
    elif mode == CompositeMode.DESTINATION_IN:
        out_a = da * sa
        out_c = dst[..., :3].astype(np.float64)
    else:
        raise ValueError(f"Unsupported composite mode: {mode}")

    a8 = np.rint(out_a * 255.0)
    c8 = np.where(a8 > 0, np.rint(out_c), 0.0)
    dst[..., :3] = np.clip(c8, 0, 255).astype(np.uint8)
    dst[..., 3:4] = np.clip(a8, 0, 255).astype(np.uint8)


class RasterSurface:
    """
    Offscreen RGBA8 drawing buffer (straight alpha) with canvas-like compositing.

    A surface has a single owner at a time: ``checkout()`` guards a render pass and a
    second concurrent checkout fails with ``SurfaceUnavailable``.
    """

    def __init__(self, width: int, height: int, *, max_megapixels: Optional[float] = None):
        self._max_megapixels = get_max_megapixels() if max_megapixels is None else float(max_megapixels)
        self._pixels = self._allocate(width, height)
        self._rendered = False
        self._released = False
        self._lock = threading.Lock()

    @classmethod
    def create(cls, width: int, height: int, *, max_megapixels: Optional[float] = None) -> "RasterSurface":
        return cls(width, height, max_megapixels=max_megapixels)

    @classmethod
    def from_image(cls, image, *, max_megapixels: Optional[float] = None) -> "RasterSurface":
        arr = as_rgba_array(image)
        surface = cls(arr.shape[1], arr.shape[0], max_megapixels=max_megapixels)
        surface._pixels[...] = arr
        surface._rendered = True
        return surface

    def _allocate(self, width: int, height: int) -> np.ndarray:
        w, h = int(width), int(height)
        if w <= 0 or h <= 0:
            raise AllocationError(f"Invalid surface size: {(w, h)}")
        if w * h > self._max_megapixels * 1_000_000:
            raise AllocationError(
                f"Surface {w}x{h} exceeds the {self._max_megapixels:g} megapixel limit"
            )
        try:
            return np.zeros((h, w, 4), dtype=np.uint8)
        except MemoryError as e:
            raise AllocationError(f"Could not allocate surface {w}x{h}") from e

    def _buffer(self) -> np.ndarray:
        if self._released:
            raise SurfaceUnavailable("Surface has been released")
        return self._pixels

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def max_megapixels(self) -> float:
        return self._max_megapixels

    @property
    def released(self) -> bool:
        return self._released

    @property
    def pixels(self) -> np.ndarray:
        """Read-only view of the (H, W, 4) buffer."""
        view = self._buffer().view()
        view.flags.writeable = False
        return view

    def get_pixel(self, x: int, y: int) -> RGBA:
        r, g, b, a = (int(v) for v in self._buffer()[y, x])
        return r, g, b, a

    def put_pixels(self, pixels) -> None:
        arr = as_rgba_array(pixels)
        buf = self._buffer()
        if arr.shape != buf.shape:
            raise ValueError(f"Pixel buffer shape {arr.shape} does not match surface {buf.shape}")
        buf[...] = arr
        self._rendered = True

    @contextmanager
    def checkout(self) -> Iterator["RasterSurface"]:
        self._buffer()
        if not self._lock.acquire(blocking=False):
            raise SurfaceUnavailable("Surface is already in use by another render")
        try:
            yield self
        finally:
            self._lock.release()

    def resize(self, width: int, height: int) -> None:
        """Reallocate to a new size; contents are reset to transparent."""
        self._buffer()
        if (int(width), int(height)) == self.size:
            self._pixels[...] = 0
        else:
            self._pixels = self._allocate(width, height)
        self._rendered = False

    def clear(self) -> None:
        self._buffer()[...] = 0
        self._rendered = True

    def fill_rect(self, x: int, y: int, w: int, h: int, color) -> None:
        buf = self._buffer()
        rgba = np.array(parse_color(color), dtype=np.uint8)
        x0, y0 = max(0, int(x)), max(0, int(y))
        x1, y1 = min(self.width, int(x) + int(w)), min(self.height, int(y) + int(h))
        if x1 <= x0 or y1 <= y0:
            return
        region = buf[y0:y1, x0:x1]
        if rgba[3] == 255:
            region[...] = rgba
        else:
            _composite(region, np.broadcast_to(rgba, region.shape), CompositeMode.SOURCE_OVER)
        self._rendered = True

    def blit(self, source, mode: Union[CompositeMode, str] = CompositeMode.SOURCE_OVER, x: int = 0, y: int = 0) -> None:
        """
        Draw ``source`` with its top-left corner at (x, y) using a Porter-Duff mode.

        ``destination-in`` also clears every destination pixel the source does not cover.
        """
        mode = CompositeMode(mode)
        buf = self._buffer()
        src = as_rgba_array(source)
        sh, sw = src.shape[:2]
        x, y = int(x), int(y)

        dx0, dy0 = max(0, x), max(0, y)
        dx1, dy1 = min(self.width, x + sw), min(self.height, y + sh)

        if mode == CompositeMode.DESTINATION_IN:
            covered = np.zeros(buf.shape[:2], dtype=bool)
            if dx1 > dx0 and dy1 > dy0:
                covered[dy0:dy1, dx0:dx1] = True
            buf[~covered] = 0

        if dx1 > dx0 and dy1 > dy0:
            src_region = src[dy0 - y : dy1 - y, dx0 - x : dx1 - x]
            _composite(buf[dy0:dy1, dx0:dx1], src_region, mode)
        self._rendered = True

    def apply_gaussian_blur(self, radius_px: float) -> None:
        """
        Gaussian blur with sigma == radius (CSS ``blur()``); pixels beyond the edges are transparent.
        """
        radius = float(radius_px)
        if radius < 0:
            raise ValueError(f"Blur radius must be >= 0, got {radius_px}")
        buf = self._buffer()
        if radius == 0:
            return

        f = buf.astype(np.float32)
        alpha = f[..., 3:4] / 255.0
        premul = np.concatenate([f[..., :3] * alpha, f[..., 3:4]], axis=2)
        blurred = cv2.GaussianBlur(
            premul,
            (0, 0),
            sigmaX=radius,
            sigmaY=radius,
            borderType=cv2.BORDER_CONSTANT,
        )

        out_a = np.clip(blurred[..., 3:4], 0.0, 255.0)
        rgb = np.divide(
            blurred[..., :3] * 255.0,
            out_a,
            out=np.zeros_like(blurred[..., :3]),
            where=out_a > 0.5,
        )
        buf[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
        buf[..., 3:4] = np.rint(out_a).astype(np.uint8)
        buf[buf[..., 3] == 0] = 0

    def to_grayscale(self) -> None:
        """R, G, B <- round((R + G + B) / 3); alpha is left untouched."""
        buf = self._buffer()
        total = buf[..., :3].astype(np.int32).sum(axis=2)
        # (R+G+B)/3 never ends in .5, so (sum + 1) // 3 is round-to-nearest.
        avg = ((total + 1) // 3).astype(np.uint8)
        buf[..., 0] = avg
        buf[..., 1] = avg
        buf[..., 2] = avg

    def copy(self) -> "RasterSurface":
        clone = RasterSurface.from_image(self._buffer().copy(), max_megapixels=self._max_megapixels)
        clone._rendered = self._rendered
        return clone

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self._buffer().copy())

    def encode_png(self) -> bytes:
        """
        Lossless RGBA PNG of the current contents.
        """
        if self._released:
            raise EncodingError("Cannot encode a released surface")
        if not self._rendered:
            raise EncodingError("Surface was never cleared or rendered")
        buf = io.BytesIO()
        try:
            self.to_pil().save(buf, format="PNG", optimize=False)
        except (OSError, ValueError) as e:
            raise EncodingError(f"PNG encoding failed: {e}") from e
        return buf.getvalue()

    def release(self) -> None:
        self._released = True
        self._pixels = np.zeros((1, 1, 4), dtype=np.uint8)

    def __repr__(self) -> str:
        state = "released" if self._released else f"{self.width}x{self.height}"
        return f"<RasterSurface {state}>"
