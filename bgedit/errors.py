from __future__ import annotations


class BgEditError(RuntimeError):
    """Base class for every failure raised by the editor core."""


class InputMismatchError(BgEditError, ValueError):
    """Original and foreground images do not share the same dimensions."""


class AllocationError(BgEditError, MemoryError):
    """A surface could not be allocated (invalid or oversized dimensions)."""


class SurfaceUnavailable(BgEditError):
    """The drawing surface is released or already in use by another render."""


class SegmentationError(BgEditError):
    """The background-removal collaborator reported a failure."""


class EncodingError(BgEditError):
    """The final surface could not be serialized."""


class UploadRejected(BgEditError, ValueError):
    """An uploaded payload is not an image or exceeds the size ceiling."""
