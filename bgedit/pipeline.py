from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .contracts import EffectConfig
from .effects import STAGES, EffectStage
from .errors import InputMismatchError
from .export import ArtifactStore, OutputArtifact
from .surface import RasterSurface, as_rgba_array

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageTimings:
    stages_s: Dict[str, float] = field(default_factory=dict)
    encode_s: float = 0.0
    total_s: float = 0.0


def _to_pixels(image, name: str) -> np.ndarray:
    try:
        return as_rgba_array(image)
    except ValueError as e:
        raise InputMismatchError(f"Unusable {name} image: {e}") from e


def check_inputs(original, foreground) -> Tuple[np.ndarray, np.ndarray]:
    orig = _to_pixels(original, "original")
    fg = _to_pixels(foreground, "foreground")
    if orig.shape != fg.shape:
        raise InputMismatchError(
            f"Original {orig.shape[1]}x{orig.shape[0]} and foreground "
            f"{fg.shape[1]}x{fg.shape[0]} must have the same size"
        )
    return orig, fg


class CompositePipeline:
    """
    Owns one RasterSurface and renders (original, foreground, config) into PNG artifacts.

    Deterministic, linear pass:
      1) Background (checkerboard / original / colour)
      2) Blur
      3) Grayscale
      4) Foreground
      5) Border
      6) Encode

    A failed render never replaces the current artifact; the pipeline stays usable.
    """

    def __init__(
        self,
        surface: Optional[RasterSurface] = None,
        store: Optional[ArtifactStore] = None,
        stages: Sequence[EffectStage] = STAGES,
    ):
        self._surface = surface
        self.store = store if store is not None else ArtifactStore()
        self.stages = tuple(stages)
        self.current: Optional[OutputArtifact] = None
        self.last_timings: Optional[StageTimings] = None

    @property
    def surface(self) -> Optional[RasterSurface]:
        return self._surface

    def _surface_for(self, width: int, height: int) -> RasterSurface:
        if self._surface is None or self._surface.released:
            self._surface = RasterSurface.create(width, height)
        return self._surface

    def compose(
        self,
        original,
        foreground,
        config: Optional[EffectConfig] = None,
        filename: Optional[str] = None,
    ) -> OutputArtifact:
        """
        Render and encode without touching ``current``; see ``commit``/``discard``.
        """
        config = config if config is not None else EffectConfig()
        t0 = time.perf_counter()
        orig, fg = check_inputs(original, foreground)
        height, width = fg.shape[:2]

        surface = self._surface_for(width, height)
        stage_times: Dict[str, float] = {}
        with surface.checkout():
            surface.resize(width, height)
            surface.clear()
            for stage in self.stages:
                ts = time.perf_counter()
                stage.apply(surface, orig, fg, config)
                stage_times[stage.name] = time.perf_counter() - ts

            t_enc0 = time.perf_counter()
            artifact = self.store.publish(surface, filename)
            t_enc1 = time.perf_counter()

        self.last_timings = StageTimings(
            stages_s=stage_times,
            encode_s=t_enc1 - t_enc0,
            total_s=t_enc1 - t0,
        )
        logger.debug(
            "rendered %dx%d effects=%s total=%.3fs encode=%.3fs",
            width,
            height,
            config.enabled_kinds(),
            self.last_timings.total_s,
            self.last_timings.encode_s,
        )
        return artifact

    def commit(self, artifact: OutputArtifact) -> OutputArtifact:
        """Make ``artifact`` current and release the one it supersedes."""
        previous, self.current = self.current, artifact
        if previous is not None and previous.handle != artifact.handle:
            self.store.release(previous.handle)
        return artifact

    def discard(self, artifact: OutputArtifact) -> None:
        if self.current is None or self.current.handle != artifact.handle:
            self.store.release(artifact.handle)

    def render(
        self,
        original,
        foreground,
        config: Optional[EffectConfig] = None,
        filename: Optional[str] = None,
    ) -> OutputArtifact:
        return self.commit(self.compose(original, foreground, config, filename=filename))

    def release_current(self) -> None:
        if self.current is not None:
            self.store.release(self.current.handle)
            self.current = None

    def close(self) -> None:
        self.release_current()
        if self._surface is not None:
            self._surface.release()
            self._surface = None
