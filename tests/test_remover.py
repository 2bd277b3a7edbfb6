from __future__ import annotations

import io
import threading

import numpy as np
import pytest
import torch
from PIL import Image

from bgedit.contracts import CompleteEvent, ProgressEvent
from bgedit.export import decode_png
from bgedit.remover import MattingRemover, SegmentationWorker, phase_label


def _png_bytes(w: int = 40, h: int = 30, color=(10, 120, 240)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), color).save(buf, format="PNG")
    return buf.getvalue()


class _ConstLogits(torch.nn.Module):
    def forward(self, x):
        return torch.full((1, 1, x.shape[-2], x.shape[-1]), 20.0)


class _ScriptedRemover:
    def __init__(self, steps, blob=b"png", error=None, gate=None):
        self.steps = steps
        self.blob = blob
        self.error = error
        self.gate = gate
        self.hints = []

    def remove(self, image_bytes, hint=None, on_progress=None):
        self.hints.append(hint)
        if self.gate is not None:
            self.gate.wait(5)
        for p in self.steps:
            on_progress(p)
        if self.error is not None:
            raise self.error
        return self.blob


def _collect(worker: SegmentationWorker):
    events = []
    worker.subscribe(events.append)
    return events


@pytest.mark.parametrize(
    "progress, label",
    [
        (0, "Loading image..."),
        (14, "Loading image..."),
        (15, "Preparing image..."),
        (30, "Analyzing image..."),
        (50, "Removing background..."),
        (79, "Removing background..."),
        (80, "Finalizing..."),
        (100, "Finalizing..."),
    ],
)
def test_phase_label(progress, label):
    assert phase_label(progress) == label


def test_worker_emits_monotonic_progress_then_one_completion():
    worker = SegmentationWorker(_ScriptedRemover([10, 30, 20, 30, 100], blob=b"fg"))
    events = _collect(worker)
    worker.submit(b"img")
    assert worker.wait(5)

    progress = [e.progress for e in events if isinstance(e, ProgressEvent)]
    assert progress == [10, 30, 100]
    assert [e.phase for e in events if isinstance(e, ProgressEvent)][0] == "Loading image..."
    completes = [e for e in events if isinstance(e, CompleteEvent)]
    assert len(completes) == 1
    assert events[-1] is completes[0]
    assert completes[0].success and completes[0].blob == b"fg"


def test_worker_reports_failure_as_completion():
    worker = SegmentationWorker(_ScriptedRemover([10], error=RuntimeError("model exploded")))
    events = _collect(worker)
    worker.submit(b"img")
    assert worker.wait(5)

    done = events[-1]
    assert isinstance(done, CompleteEvent)
    assert done.success is False
    assert done.error == "model exploded"


def test_cancel_drops_superseded_job_events():
    gate = threading.Event()
    worker = SegmentationWorker(_ScriptedRemover([10, 100], blob=b"old", gate=gate))
    events = _collect(worker)

    worker.submit(b"img")
    stale = worker._thread
    worker.cancel()
    gate.set()
    stale.join(5)
    assert events == []

    worker.remover = _ScriptedRemover([100], blob=b"new")
    worker.submit(b"img")
    assert worker.wait(5)
    assert [type(e) for e in events] == [ProgressEvent, CompleteEvent]
    assert events[-1].blob == b"new"


def test_unsubscribe_stops_delivery():
    worker = SegmentationWorker(_ScriptedRemover([50]))
    events = []
    unsubscribe = worker.subscribe(events.append)
    unsubscribe()
    worker.submit(b"img")
    assert worker.wait(5)
    assert events == []


def test_matting_remover_produces_same_size_foreground():
    remover = MattingRemover(model=_ConstLogits(), device=torch.device("cpu"))
    seen = []
    blob = remover.remove(_png_bytes(), on_progress=seen.append)

    fg = decode_png(blob)
    assert fg.shape == (30, 40, 4)
    assert (fg[..., 3] >= 254).all()
    assert tuple(fg[5, 5, :3]) == (10, 120, 240)
    assert seen == [10, 30, 50, 80, 100]


def test_matting_remover_honours_hint_mask():
    remover = MattingRemover(model=_ConstLogits(), device=torch.device("cpu"))
    hint = np.full((30, 40), 128, dtype=np.uint8)
    hint[:, :10] = 0
    fg = decode_png(remover.remove(_png_bytes(), hint=hint))

    assert (fg[:, :10, 3] == 0).all()
    assert (fg[:, 10:, 3] >= 254).all()


def test_busy_while_job_runs():
    gate = threading.Event()
    worker = SegmentationWorker(_ScriptedRemover([100], gate=gate))
    assert worker.busy is False
    worker.submit(b"img")
    assert worker.busy is True
    gate.set()
    assert worker.wait(5)
    assert worker.busy is False


def test_events_carry_their_job_id():
    worker = SegmentationWorker(_ScriptedRemover([40, 100], blob=b"fg"))
    events = _collect(worker)
    job = worker.submit(b"img")
    assert worker.wait(5)
    assert {e.job_id for e in events} == {job}
