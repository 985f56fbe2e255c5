"""
StreamSettings construction, merging and validation.
"""

from __future__ import annotations

import pytest

from streamdelay.infra.exceptions import ConfigurationError
from streamdelay.runtime.config import StreamSettings
from streamdelay.runtime.states import ControlEvent, CensorshipState, Snapshot, StreamState


def test_defaults():
    settings = StreamSettings()
    assert settings.delay_seconds == 15
    assert settings.restart_seconds == 3
    assert (settings.width, settings.height) == (1920, 1080)
    assert settings.encoder == "x264"
    assert settings.nvenc_preset == "low-latency-hq"
    assert settings.pixelize_scale == 20


def test_from_dict_accepts_kebab_and_snake_keys():
    settings = StreamSettings.from_dict(
        {"delay-seconds": 30, "restart_seconds": 5, "out-uri": "srt://x", "api-key": "ignored"}
    )
    assert settings.delay_seconds == 30
    assert settings.restart_seconds == 5
    assert settings.out_uri == "srt://x"


def test_merged_skips_none():
    settings = StreamSettings(delay_seconds=20).merged({"delay_seconds": None, "width": 1280, "api_key": "k"})
    assert settings.delay_seconds == 20
    assert settings.width == 1280


@pytest.mark.parametrize("field", ["delay_seconds", "restart_seconds"])
def test_negative_timings_rejected(field):
    with pytest.raises(ConfigurationError):
        StreamSettings(**{field: -1})


def test_control_event_parse():
    assert ControlEvent.parse("censor") is ControlEvent.CENSOR
    assert ControlEvent.parse(ControlEvent.STOP) is ControlEvent.STOP
    with pytest.raises(ValueError, match="Unknown control event"):
        ControlEvent.parse("rewind")


def test_status_shape():
    snapshot = Snapshot(
        censorship=CensorshipState.CENSORED_DEACTIVATING,
        stream=StreamState.STARTED,
        start_time=1_700_000_000.25,
        delay_seconds=15,
        restart_seconds=3,
        generation=2,
    )
    assert snapshot.to_status() == {
        "delaySeconds": 15,
        "restartSeconds": 3,
        "isCensored": True,
        "isStreamRunning": True,
        "startTime": 1_700_000_000_250,
        "state": {
            "censorship": {"censored": "deactivating"},
            "stream": {"running": "started"},
        },
        "error": None,
    }


def test_flat_states_are_not_nested():
    snapshot = Snapshot(CensorshipState.NORMAL, StreamState.RESTARTING, None, 15, 3)
    assert snapshot.state_value == {"censorship": "normal", "stream": "restarting"}
    assert snapshot.to_status()["startTime"] is None
