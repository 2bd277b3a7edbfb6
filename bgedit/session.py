from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Tuple

import numpy as np

from .contracts import EffectConfig, EffectKind, ProgressEvent
from .errors import BgEditError, SegmentationError
from .export import OutputArtifact, decode_png
from .io import Upload
from .pipeline import CompositePipeline
from .remover import SegmentationWorker, WorkerEvent

logger = logging.getLogger(__name__)

_Snapshot = Tuple[Optional[Upload], Optional[np.ndarray], EffectConfig]


class EditorSession:
    """
    One editing session: an uploaded original, its removed-background foreground,
    the current EffectConfig and the latest rendered artifact.

    Render requests are stamped with an increasing counter; a request that is no
    longer the latest when it gets its turn (or finishes) is dropped. Worker events
    carry the id of the removal job that produced them and only the job started by
    the latest ``open()`` may touch the session.
    """

    def __init__(self, worker: SegmentationWorker, pipeline: Optional[CompositePipeline] = None):
        self.worker = worker
        self.pipeline = pipeline if pipeline is not None else CompositePipeline()
        self.config = EffectConfig()
        self.original: Optional[Upload] = None
        self.foreground: Optional[np.ndarray] = None

        self.processing = False
        self.progress = 0
        self.phase = ""
        self.last_error: Optional[BgEditError] = None

        self._job: Optional[int] = None
        self._requests = 0
        self._state_lock = threading.Lock()
        self._render_lock = threading.Lock()
        self._done = threading.Event()
        self._done.set()
        self._unsubscribe = worker.subscribe(self._on_worker_event)

    @property
    def artifact(self) -> Optional[OutputArtifact]:
        return self.pipeline.current

    def open(self, upload: Upload, hint: Optional[np.ndarray] = None) -> int:
        """
        Start background removal for a new original; any job in flight is replaced.
        """
        self.worker.cancel()
        # Lock order: render, then state.
        with self._render_lock:
            with self._state_lock:
                self._requests += 1
                self.original = upload
                self.foreground = None
                self.last_error = None
                self.processing = True
                self.progress = 0
                self.phase = ""
                self._done.clear()
                self._job = self.worker.submit(upload.data, hint=hint)
                job = self._job
            self.pipeline.release_current()
        return job

    def refine(self, hint: np.ndarray) -> int:
        """Re-run removal on the current original with a user scribble mask."""
        if self.original is None:
            raise ValueError("No image has been opened")
        return self.open(self.original, hint=hint)

    def use_foreground(self, upload: Upload, foreground: np.ndarray) -> Optional[OutputArtifact]:
        """Skip removal when the foreground is already known."""
        self.worker.cancel()
        with self._state_lock:
            self._job = None
            self.original = upload
            self.foreground = foreground
            self.last_error = None
            self._reset_progress()
            self._done.set()
        return self._render()

    def wait(self, timeout: Optional[float] = None) -> Optional[OutputArtifact]:
        """
        Block until the removal job completes; re-raises the error that ended it, if any.
        """
        if not self._done.wait(timeout):
            raise TimeoutError("Background removal did not complete in time")
        if self.last_error is not None:
            raise self.last_error
        return self.artifact

    def update_effect(self, kind: EffectKind, enabled: bool, **options: Any) -> Optional[OutputArtifact]:
        """
        Apply one effect change and re-render; returns None while no foreground exists
        or when a newer request superseded this one.
        """
        self.config = self.config.with_effect(kind, enabled, **options)
        if self.foreground is None:
            return None
        return self._render()

    def set_config(self, config: EffectConfig) -> Optional[OutputArtifact]:
        self.config = config
        if self.foreground is None:
            return None
        return self._render()

    def download(self) -> Tuple[str, bytes]:
        artifact = self.artifact
        if artifact is None:
            raise LookupError("Nothing has been rendered yet")
        return artifact.filename, self.pipeline.store.resolve(artifact.handle)

    def close(self) -> None:
        self._unsubscribe()
        self.worker.cancel()
        with self._state_lock:
            self._job = None
            self._requests += 1
            self._reset_progress()
            self._done.set()
        self.pipeline.close()

    def _reset_progress(self) -> None:
        self.processing = False
        self.progress = 0
        self.phase = ""

    def _take_ticket(self) -> Tuple[int, _Snapshot]:
        """Caller holds ``_state_lock``."""
        self._requests += 1
        return self._requests, (self.original, self.foreground, self.config)

    def _render(self) -> Optional[OutputArtifact]:
        with self._state_lock:
            ticket, snapshot = self._take_ticket()
        return self._render_ticket(ticket, snapshot)

    def _render_ticket(self, ticket: int, snapshot: _Snapshot) -> Optional[OutputArtifact]:
        original, foreground, config = snapshot
        with self._render_lock:
            if ticket != self._requests:
                logger.debug("render request %d superseded before start", ticket)
                return None
            artifact = self.pipeline.compose(
                original.pixels,
                foreground,
                config,
                filename=original.filename,
            )
            if ticket != self._requests:
                logger.debug("render request %d superseded, discarding output", ticket)
                self.pipeline.discard(artifact)
                return None
            return self.pipeline.commit(artifact)

    def _on_worker_event(self, event: WorkerEvent) -> None:
        with self._state_lock:
            if event.job_id != self._job:
                logger.debug("dropping %s event of superseded job %d", event.type, event.job_id)
                return
            if isinstance(event, ProgressEvent):
                self.progress = event.progress
                self.phase = event.phase
                return

        error: Optional[BgEditError] = None
        foreground: Optional[np.ndarray] = None
        if not event.success:
            error = SegmentationError(event.error or "Unknown error")
            logger.warning("background removal failed: %s", event.error)
        else:
            try:
                foreground = decode_png(event.blob)
            except BgEditError as e:
                error = SegmentationError(f"Unreadable foreground: {e}")

        with self._state_lock:
            if event.job_id != self._job:
                logger.debug("removal job %d superseded while decoding", event.job_id)
                return
            self._reset_progress()
            if error is not None:
                self.last_error = error
                self._settle(event.job_id)
                return
            self.foreground = foreground
            ticket, snapshot = self._take_ticket()

        try:
            self._render_ticket(ticket, snapshot)
        except BgEditError as e:
            # Prior artifact (if any) stays displayed; the caller retries on next edit.
            error = e
        with self._state_lock:
            if event.job_id == self._job:
                self.last_error = error
                self._settle(event.job_id)

    def _settle(self, job_id: int) -> None:
        """Caller holds ``_state_lock``."""
        if self._job == job_id:
            self._job = None
            self._done.set()
