from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .config import (
    DEFAULT_BACKGROUND_COLOR,
    DEFAULT_BLUR_RADIUS,
    DEFAULT_BORDER_COLOR,
    DEFAULT_BORDER_SIZE,
)
from .surface import parse_color

EffectKind = Literal["background", "border", "blur", "bw"]
BackgroundMode = Literal["fill", "original", "transparent"]


def _check_color(value: str) -> str:
    try:
        parse_color(value)
    except ValueError as e:
        raise ValueError(f"Unrecognized colour: {value!r}") from e
    return value


ColorStr = Annotated[str, AfterValidator(_check_color)]


class _Effect(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = False


class BackgroundEffect(_Effect):
    """
    Background layer. ``mode`` is derived unless given explicitly:
      - disabled -> "transparent" (checkerboard)
      - use_original -> "original" (wins over color)
      - otherwise -> "fill"
    """

    kind: Literal["background"] = "background"
    mode: BackgroundMode = "transparent"
    color: ColorStr = DEFAULT_BACKGROUND_COLOR
    use_original: bool = False

    @model_validator(mode="before")
    @classmethod
    def _resolve_mode(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        enabled = bool(data.get("enabled", False))
        explicit = data.get("mode")

        if explicit == "transparent":
            enabled = False
        elif explicit == "original":
            data["use_original"] = True
        elif explicit == "fill":
            data["use_original"] = False

        if not enabled:
            data["mode"] = "transparent"
        elif data.get("use_original"):
            data["mode"] = "original"
        else:
            data["mode"] = "fill"
        data["enabled"] = enabled
        return data


class BorderEffect(_Effect):
    kind: Literal["border"] = "border"
    color: ColorStr = DEFAULT_BORDER_COLOR
    size_px: float = Field(default=DEFAULT_BORDER_SIZE, ge=0)


class BlurEffect(_Effect):
    kind: Literal["blur"] = "blur"
    radius_px: float = Field(default=DEFAULT_BLUR_RADIUS, ge=0)


class GrayscaleEffect(_Effect):
    kind: Literal["bw"] = "bw"


Effect = Annotated[
    Union[BackgroundEffect, BorderEffect, BlurEffect, GrayscaleEffect],
    Field(discriminator="kind"),
]

_EFFECT_TYPES = {
    "background": BackgroundEffect,
    "border": BorderEffect,
    "blur": BlurEffect,
    "bw": GrayscaleEffect,
}


class EffectConfig(BaseModel):
    """
    Immutable set of effect toggles; every change produces a new EffectConfig.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    background: BackgroundEffect = Field(default_factory=BackgroundEffect)
    border: BorderEffect = Field(default_factory=BorderEffect)
    blur: BlurEffect = Field(default_factory=BlurEffect)
    bw: GrayscaleEffect = Field(default_factory=GrayscaleEffect)

    def effect(self, kind: EffectKind) -> Effect:
        if kind not in _EFFECT_TYPES:
            raise KeyError(f"Unknown effect kind: {kind!r}")
        return getattr(self, kind)

    def with_effect(self, kind: EffectKind, enabled: bool, **options: Any) -> "EffectConfig":
        """
        Return a copy with one effect toggled and its options merged over the previous ones.

        Switching the border on from off without an explicit colour restores the default colour.
        """
        prev = self.effect(kind)
        data: Dict[str, Any] = prev.model_dump(exclude={"kind"})
        if kind == "background":
            data.pop("mode", None)
        if kind == "border" and enabled and not prev.enabled and "color" not in options:
            data["color"] = DEFAULT_BORDER_COLOR
        data.update(options)
        data["enabled"] = bool(enabled)

        updated = _EFFECT_TYPES[kind].model_validate(data)
        return self.model_copy(update={kind: updated})

    def enabled_kinds(self) -> list[str]:
        return [k for k in _EFFECT_TYPES if getattr(self, k).enabled]


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)
    phase: str = ""
    job_id: int = 0


class CompleteEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["complete"] = "complete"
    success: bool
    blob: Optional[bytes] = None
    error: Optional[str] = None
    job_id: int = 0

    @model_validator(mode="before")
    @classmethod
    def _default_error(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("success") and not data.get("error"):
            data = {**data, "error": "Unknown error"}
        return data

    @model_validator(mode="after")
    def _check_payload(self) -> "CompleteEvent":
        if self.success and not self.blob:
            raise ValueError("A successful completion must carry a blob")
        return self


WorkerMessage = Annotated[Union[ProgressEvent, CompleteEvent], Field(discriminator="type")]

_WORKER_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(WorkerMessage)


def parse_worker_message(payload: Dict[str, Any]) -> Union[ProgressEvent, CompleteEvent]:
    """
    Validate a raw ``{"type": ...}`` message from a removal worker running out of
    process (JSON over a pipe or socket); in-process workers emit the models directly.
    """
    return _WORKER_MESSAGE_ADAPTER.validate_python(payload)
