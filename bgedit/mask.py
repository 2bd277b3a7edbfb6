from __future__ import annotations

from functools import lru_cache
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import BORDER_SIZE_DIVISOR, get_max_megapixels
from .surface import CompositeMode, RasterSurface, as_rgba_array


def border_thickness(size_px: float) -> int:
    """
    Ring thickness for a border of ``size_px``: max(1, floor(size_px / 8)).
    """
    return max(1, int(np.floor(float(size_px) / BORDER_SIZE_DIVISOR)))


@lru_cache(maxsize=64)
def disk_offsets(radius: int) -> Tuple[Tuple[int, int], ...]:
    """
    All (dx, dy) with dx^2 + dy^2 <= radius^2, x-major then y, computed once per radius.
    """
    r = int(radius)
    if r <= 0:
        return ((0, 0),)
    return tuple((dx, dy) for dx in range(-r, r + 1) for dy in range(-r, r + 1) if dx * dx + dy * dy <= r * r)


def disk_kernel(radius: int) -> np.ndarray:
    """
    Structuring element holding exactly the offsets of ``disk_offsets(radius)``.
    """
    r = max(0, int(radius))
    kernel = np.zeros((2 * r + 1, 2 * r + 1), dtype=np.uint8)
    for dx, dy in disk_offsets(r):
        kernel[dy + r, dx + r] = 1
    return kernel


def silhouette(image, *, max_megapixels: Optional[float] = None) -> RasterSurface:
    """
    White RGBA surface carrying only the alpha footprint of ``image``.
    """
    arr = as_rgba_array(image)
    out = np.zeros_like(arr)
    out[..., :3] = 255
    out[..., 3] = arr[..., 3]
    out[out[..., 3] == 0] = 0
    return RasterSurface.from_image(out, max_megapixels=max_megapixels)


def dilate(alpha_source, radius_px: int, *, max_megapixels: Optional[float] = None) -> RasterSurface:
    """
    Morphological dilation of the alpha footprint by a filled disk.

    The result is padded by ``radius_px`` on every side, so pixel (x, y) of the source
    lands at (x + r, y + r). Stamping the footprint once per disk offset and keeping the
    maximum alpha is the same operation as a grayscale dilation with the disk as
    structuring element, which is what is computed here.
    Radius <= 0 returns the unmodified silhouette with no padding.
    """
    arr = as_rgba_array(alpha_source)
    r = int(radius_px)
    if r <= 0:
        return silhouette(arr, max_megapixels=max_megapixels)

    h, w = arr.shape[:2]
    padded = np.zeros((h + 2 * r, w + 2 * r), dtype=np.uint8)
    padded[r : r + h, r : r + w] = arr[..., 3]
    grown = cv2.dilate(padded, disk_kernel(r), iterations=1, borderType=cv2.BORDER_CONSTANT, borderValue=0)

    out = np.zeros((h + 2 * r, w + 2 * r, 4), dtype=np.uint8)
    out[..., :3] = 255
    out[..., 3] = grown
    out[grown == 0] = 0
    return RasterSurface.from_image(out, max_megapixels=max_megapixels)


def colorize(mask: RasterSurface, color, *, max_megapixels: Optional[float] = None) -> RasterSurface:
    """
    Fill a surface of the mask's size with ``color`` and cut it to the mask shape.
    """
    limit = mask.max_megapixels if max_megapixels is None else max_megapixels
    out = RasterSurface.create(mask.width, mask.height, max_megapixels=limit)
    out.clear()
    out.fill_rect(0, 0, out.width, out.height, color)
    out.blit(mask, CompositeMode.DESTINATION_IN)
    return out


def border_mask(
    foreground,
    size_px: float,
    color,
    *,
    max_megapixels: Optional[float] = None,
) -> Tuple[RasterSurface, int]:
    """
    Coloured, dilated footprint used for the outline effect, plus its padding (thickness).

    The padded mask may exceed ``max_megapixels`` by exactly its padding, so any
    foreground that fits the limit also gets a border.
    """
    arr = as_rgba_array(foreground)
    thickness = border_thickness(size_px)
    h, w = arr.shape[:2]
    base = get_max_megapixels() if max_megapixels is None else float(max_megapixels)
    padding_px = (w + 2 * thickness) * (h + 2 * thickness) - w * h
    # +1 px absorbs float rounding in the megapixel comparison
    limit = base + (padding_px + 1) / 1_000_000
    ring = colorize(dilate(arr, thickness, max_megapixels=limit), color, max_megapixels=limit)
    return ring, thickness
