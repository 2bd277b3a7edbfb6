from __future__ import annotations

import io
import logging
import threading
from typing import Callable, List, Optional, Protocol, Union

import numpy as np
from PIL import Image

from .config import DEFAULT_MODEL_SPEC, PROGRESS_FINAL_PHASE, PROGRESS_PHASES
from .contracts import CompleteEvent, ProgressEvent
from .io import decode_image

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
WorkerEvent = Union[ProgressEvent, CompleteEvent]
Subscriber = Callable[[WorkerEvent], None]


def phase_label(progress: int) -> str:
    for bound, label in PROGRESS_PHASES:
        if progress < bound:
            return label
    return PROGRESS_FINAL_PHASE


class BackgroundRemover(Protocol):
    def remove(
        self,
        image_bytes: bytes,
        hint: Optional[np.ndarray] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """Return PNG bytes of the same-size RGBA foreground."""
        ...


class MattingRemover:
    """
    Background removal with a local matting model (BiRefNet from the Hub or TorchScript).

    The model is loaded lazily on first use and reused afterwards.
    """

    def __init__(self, model_spec: str = DEFAULT_MODEL_SPEC, model=None, device=None):
        self.model_spec = model_spec
        self._model = model
        self._device = device
        self._load_lock = threading.Lock()

    def _ensure_model(self):
        with self._load_lock:
            if self._model is None:
                from .model import load_model

                logger.info("loading matting model %s", self.model_spec)
                self._model, self._device = load_model(self.model_spec)
        return self._model, self._device

    def remove(
        self,
        image_bytes: bytes,
        hint: Optional[np.ndarray] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        from .inference import predict_matte
        from .postprocess import apply_hint, inject_alpha, postprocess_matte
        from .preprocess import normalize, resize_with_padding, to_rgb

        report = on_progress or (lambda _p: None)

        report(10)
        rgb = to_rgb(decode_image(image_bytes))
        model, device = self._ensure_model()

        report(30)
        padded, meta = resize_with_padding(rgb)
        x = normalize(padded)

        report(50)
        matte_sq = predict_matte(model, x, device)

        report(80)
        matte, _matte_lcca = postprocess_matte(matte_sq, meta)
        matte = apply_hint(matte, hint)

        buf = io.BytesIO()
        Image.fromarray(inject_alpha(rgb, matte)).save(buf, format="PNG", optimize=False)
        report(100)
        return buf.getvalue()


class SegmentationWorker:
    """
    Runs a BackgroundRemover off the caller's thread and publishes its events.

    Every job emits zero or more ProgressEvents (non-decreasing) and exactly one
    CompleteEvent. ``cancel()`` is terminate-and-restart: anything a superseded job
    emits afterwards is dropped.
    """

    def __init__(self, remover: BackgroundRemover):
        self.remover = remover
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._job_id = 0
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def busy(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, image_bytes: bytes, hint: Optional[np.ndarray] = None) -> int:
        """Start a job, superseding any job still in flight; returns the job id."""
        with self._lock:
            self._job_id += 1
            job_id = self._job_id
        thread = threading.Thread(
            target=self._run,
            args=(job_id, image_bytes, hint),
            name=f"segmentation-{job_id}",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        logger.debug("segmentation job %d started", job_id)
        return job_id

    def cancel(self) -> None:
        with self._lock:
            self._job_id += 1
        logger.debug("segmentation jobs before %d cancelled", self._job_id)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the latest job finished; False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _emit(self, job_id: int, event: WorkerEvent) -> None:
        with self._lock:
            if job_id != self._job_id:
                return
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event)

    def _run(self, job_id: int, image_bytes: bytes, hint: Optional[np.ndarray]) -> None:
        last = -1

        def on_progress(progress: int) -> None:
            nonlocal last
            p = max(0, min(100, int(progress)))
            if p <= last:
                return
            last = p
            self._emit(job_id, ProgressEvent(progress=p, phase=phase_label(p), job_id=job_id))

        try:
            blob = self.remover.remove(image_bytes, hint=hint, on_progress=on_progress)
        except Exception as e:  # noqa: BLE001 - reported through the complete event
            logger.warning("segmentation job %d failed: %s", job_id, e)
            self._emit(job_id, CompleteEvent(success=False, error=str(e) or type(e).__name__, job_id=job_id))
            return
        self._emit(job_id, CompleteEvent(success=True, blob=blob, job_id=job_id))
