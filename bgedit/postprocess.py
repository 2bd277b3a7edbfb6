from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from .config import ALPHA_THRESHOLD, EDGE_BLUR_RADIUS, ERODE_KERNEL_SIZE
from .preprocess import PreprocessMeta


def restore_mask_to_original(mask_sq: np.ndarray, meta: PreprocessMeta) -> np.ndarray:
    """
    Remove the square padding and resize the matte back to (orig_h, orig_w).
    """
    if mask_sq.ndim != 2:
        raise ValueError(f"Expected 2D mask, got shape={mask_sq.shape}")
    mask_sq = mask_sq.astype(np.float32, copy=False)

    x0, y0 = meta.x_offset, meta.y_offset
    cropped = mask_sq[y0 : y0 + meta.resized_h, x0 : x0 + meta.resized_w]
    if cropped.size == 0:
        raise ValueError("Mask crop is empty; check preprocessing meta.")

    restored = cv2.resize(cropped, (meta.orig_w, meta.orig_h), interpolation=cv2.INTER_LINEAR)
    return np.clip(restored, 0.0, 1.0).astype(np.float32, copy=False)


def erode_mask(matte: np.ndarray, kernel_size: int = ERODE_KERNEL_SIZE) -> np.ndarray:
    """
    Shrink the matte slightly to drop thin halo artifacts.
    """
    k = int(kernel_size)
    if k <= 0:
        return matte.astype(np.float32, copy=False)
    if k % 2 == 0:
        k += 1
    m8 = (np.clip(matte, 0.0, 1.0) * 255.0).astype(np.uint8)
    eroded = cv2.erode(m8, np.ones((k, k), np.uint8), iterations=1)
    return eroded.astype(np.float32) / 255.0


def largest_connected_component(matte: np.ndarray, threshold: float = ALPHA_THRESHOLD) -> np.ndarray:
    """
    Keep the dominant connected component (the subject) and remove small dust blobs.
    """
    if matte.ndim != 2:
        raise ValueError(f"Expected 2D matte, got shape={matte.shape}")
    m = matte.astype(np.float32, copy=False)
    binary = (m > float(threshold)).astype(np.uint8)
    if int(binary.sum()) == 0:
        return np.zeros_like(m)

    num_labels, labels, stats, _centroids = cv2.connectedComponentsWithStats(binary, connectivity=8)
    if num_labels <= 1:
        return m
    # label 0 is background
    keep_label = int(np.argmax(stats[1:, cv2.CC_STAT_AREA]) + 1)
    return m * (labels == keep_label).astype(np.float32)


def edge_smooth_alpha(matte: np.ndarray, blur_radius: int = EDGE_BLUR_RADIUS, threshold: float = ALPHA_THRESHOLD) -> np.ndarray:
    """
    Blend a blurred matte into the original only on a thin band around its edges.
    """
    if blur_radius <= 0:
        return matte.astype(np.float32, copy=False)
    m = np.clip(matte.astype(np.float32, copy=False), 0.0, 1.0)

    edges = cv2.Canny((m * 255.0).astype(np.uint8), 60, 120)
    binary = (m > float(threshold)).astype(np.uint8) * 255
    edges = cv2.bitwise_or(edges, cv2.Canny(binary, 60, 120))

    k = 2 * blur_radius + 1
    band = cv2.dilate(edges, cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (k, k)), iterations=1)
    band_f = (band > 0).astype(np.float32)

    sigma = max(0.5, float(blur_radius))
    blurred = cv2.GaussianBlur(m, (0, 0), sigmaX=sigma, sigmaY=sigma)
    return np.clip(m * (1.0 - band_f) + blurred * band_f, 0.0, 1.0).astype(np.float32, copy=False)


def apply_hint(matte: np.ndarray, hint: Optional[np.ndarray]) -> np.ndarray:
    """
    Force the matte where the user scribbled: 0 -> background, 255 -> foreground,
    any other value leaves the prediction alone.
    """
    if hint is None:
        return matte
    hint = np.asarray(hint)
    if hint.ndim == 3:
        hint = hint[..., 0]
    if hint.shape != matte.shape:
        raise ValueError(f"Hint mask shape {hint.shape} does not match matte {matte.shape}")
    out = matte.astype(np.float32, copy=True)
    out[hint == 0] = 0.0
    out[hint == 255] = 1.0
    return out


def postprocess_matte(mask_sq: np.ndarray, meta: PreprocessMeta) -> Tuple[np.ndarray, np.ndarray]:
    """
    restore -> largest component -> erode -> edge smoothing.

    Returns the final matte and the LCCA matte (before erosion) for debugging.
    """
    matte_orig = restore_mask_to_original(mask_sq, meta)
    matte_lcca = largest_connected_component(matte_orig)
    matte_smooth = edge_smooth_alpha(erode_mask(matte_lcca))
    return matte_smooth, matte_lcca


def inject_alpha(rgb: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """
    RGBA uint8 foreground from RGB uint8 and a float32 matte in [0, 1].
    """
    if rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"Expected RGB image (H,W,3), got {rgb.shape}")
    if alpha.ndim != 2 or alpha.shape[:2] != rgb.shape[:2]:
        raise ValueError(f"Alpha shape {alpha.shape} does not match RGB {rgb.shape[:2]}")
    a8 = np.rint(np.clip(alpha, 0.0, 1.0) * 255.0).astype(np.uint8)
    return np.dstack([rgb, a8])
