from .contracts import EffectConfig
from .errors import (
    AllocationError,
    BgEditError,
    EncodingError,
    InputMismatchError,
    SegmentationError,
    SurfaceUnavailable,
    UploadRejected,
)
from .export import OutputArtifact
from .pipeline import CompositePipeline
from .surface import CompositeMode, RasterSurface

__all__ = [
    "AllocationError",
    "BgEditError",
    "CompositeMode",
    "CompositePipeline",
    "EffectConfig",
    "EncodingError",
    "InputMismatchError",
    "OutputArtifact",
    "RasterSurface",
    "SegmentationError",
    "SurfaceUnavailable",
    "UploadRejected",
]
