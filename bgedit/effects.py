from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

from .config import CHECKER_COLOR_A, CHECKER_COLOR_B, CHECKER_TILE_SIZE
from .contracts import EffectConfig
from .mask import border_mask
from .surface import CompositeMode, RasterSurface, parse_color

StageFn = Callable[[RasterSurface, np.ndarray, np.ndarray, EffectConfig], None]


def checkerboard_pattern(width: int, height: int, tile: int = CHECKER_TILE_SIZE) -> np.ndarray:
    """
    Opaque transparency indicator: the tile whose origin (x, y) satisfies
    (x + y) % (2 * tile) == 0 gets colour A, every other tile colour B.
    """
    xs = (np.arange(width) // tile) * tile
    ys = (np.arange(height) // tile) * tile
    use_a = ((ys[:, None] + xs[None, :]) % (2 * tile)) == 0

    out = np.empty((height, width, 4), dtype=np.uint8)
    out[use_a] = parse_color(CHECKER_COLOR_A)
    out[~use_a] = parse_color(CHECKER_COLOR_B)
    return out


def apply_background(surface: RasterSurface, original: np.ndarray, foreground: np.ndarray, config: EffectConfig) -> None:
    bg = config.background
    if bg.mode == "transparent":
        surface.blit(checkerboard_pattern(surface.width, surface.height))
    elif bg.mode == "original":
        surface.blit(original)
    else:
        surface.fill_rect(0, 0, surface.width, surface.height, bg.color)


def apply_blur(surface: RasterSurface, original: np.ndarray, foreground: np.ndarray, config: EffectConfig) -> None:
    """
    Blur what is drawn so far and punch a subject-shaped hole for the foreground.
    """
    if not config.blur.enabled:
        return

    blurred = surface.copy()
    blurred.apply_gaussian_blur(config.blur.radius_px)
    surface.blit(blurred, CompositeMode.SOURCE_OVER)

    scratch = RasterSurface.create(surface.width, surface.height, max_megapixels=surface.max_megapixels)
    scratch.clear()
    scratch.blit(foreground)
    surface.blit(scratch, CompositeMode.DESTINATION_OUT)


def apply_grayscale(surface: RasterSurface, original: np.ndarray, foreground: np.ndarray, config: EffectConfig) -> None:
    if config.bw.enabled:
        surface.to_grayscale()


def draw_foreground(surface: RasterSurface, original: np.ndarray, foreground: np.ndarray, config: EffectConfig) -> None:
    surface.blit(foreground, CompositeMode.SOURCE_OVER)


def apply_border(surface: RasterSurface, original: np.ndarray, foreground: np.ndarray, config: EffectConfig) -> None:
    """
    Outline ring: dilated + coloured footprint under the subject, subject redrawn on top.
    """
    border = config.border
    if not border.enabled:
        return

    ring, thickness = border_mask(
        foreground,
        border.size_px,
        border.color,
        max_megapixels=surface.max_megapixels,
    )
    surface.blit(ring, CompositeMode.SOURCE_OVER, -thickness, -thickness)
    surface.blit(foreground, CompositeMode.SOURCE_OVER)


@dataclass(frozen=True)
class EffectStage:
    name: str
    apply: StageFn


# Fixed order: changing it changes the rendered output.
STAGES: Tuple[EffectStage, ...] = (
    EffectStage("background", apply_background),
    EffectStage("blur", apply_blur),
    EffectStage("bw", apply_grayscale),
    EffectStage("foreground", draw_foreground),
    EffectStage("border", apply_border),
)
