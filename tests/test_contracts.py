from __future__ import annotations

import pytest
from pydantic import ValidationError

from bgedit.contracts import (
    BackgroundEffect,
    CompleteEvent,
    EffectConfig,
    ProgressEvent,
    parse_worker_message,
)


def test_defaults_match_editor_defaults():
    config = EffectConfig()
    assert config.background.enabled is False
    assert config.background.mode == "transparent"
    assert config.background.color == "#ffffff"
    assert config.border.color == "#FFD700"
    assert config.border.size_px == 40
    assert config.blur.radius_px == 10
    assert config.enabled_kinds() == []


def test_with_effect_returns_new_config():
    config = EffectConfig()
    updated = config.with_effect("blur", True, radius_px=4)
    assert config.blur.enabled is False
    assert updated.blur.enabled is True
    assert updated.blur.radius_px == 4
    assert updated is not config


def test_configs_are_frozen():
    config = EffectConfig()
    with pytest.raises(ValidationError):
        config.blur = config.blur
    with pytest.raises(ValidationError):
        config.blur.enabled = True


def test_options_merge_over_previous_ones():
    config = EffectConfig().with_effect("border", True, size_px=64, color="#123456")
    config = config.with_effect("border", True, size_px=80)
    assert config.border.size_px == 80
    assert config.border.color == "#123456"


def test_enabling_border_restores_default_colour():
    config = EffectConfig().with_effect("border", True, color="#123456").with_effect("border", False)
    assert config.border.color == "#123456"
    config = config.with_effect("border", True)
    assert config.border.color == "#FFD700"


def test_use_original_takes_precedence_over_colour():
    config = EffectConfig().with_effect("background", True, color="#000000", use_original=True)
    assert config.background.mode == "original"

    config = config.with_effect("background", True, mode="fill")
    assert config.background.mode == "fill"
    assert config.background.use_original is False
    assert config.background.color == "#000000"


def test_disabled_background_is_always_transparent():
    bg = BackgroundEffect(enabled=False, use_original=True)
    assert bg.mode == "transparent"
    assert BackgroundEffect(enabled=True, mode="transparent").enabled is False
    assert BackgroundEffect(enabled=True).mode == "fill"


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        EffectConfig().with_effect("background", True, color="definitely-not-a-colour")
    with pytest.raises(ValidationError):
        EffectConfig().with_effect("blur", True, radius_px=-1)
    with pytest.raises(ValidationError):
        EffectConfig().with_effect("bw", True, strength=3)
    with pytest.raises(KeyError):
        EffectConfig().with_effect("sepia", True)


def test_parse_worker_messages():
    progress = parse_worker_message({"type": "progress", "progress": 30, "phase": "Preparing image..."})
    assert isinstance(progress, ProgressEvent)
    assert progress.progress == 30

    done = parse_worker_message({"type": "complete", "success": True, "blob": b"png"})
    assert isinstance(done, CompleteEvent)
    assert done.blob == b"png"

    failed = parse_worker_message({"type": "complete", "success": False})
    assert failed.error == "Unknown error"


def test_worker_message_validation():
    with pytest.raises(ValidationError):
        parse_worker_message({"type": "progress", "progress": 101})
    with pytest.raises(ValidationError):
        parse_worker_message({"type": "complete", "success": True})
    with pytest.raises(ValidationError):
        parse_worker_message({"type": "unknown"})


def test_worker_messages_keep_job_id():
    done = parse_worker_message({"type": "complete", "success": True, "blob": b"png", "job_id": 7})
    assert done.job_id == 7
    assert ProgressEvent(progress=5).job_id == 0
