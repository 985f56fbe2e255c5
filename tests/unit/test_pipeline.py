"""
Launch description builder for the delay/redaction graph.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from streamdelay.engine.pipeline import (
    SEC,
    build_encoder,
    build_input_pipeline,
    build_output_pipeline,
    build_pipeline_description,
    gst_escape,
)
from streamdelay.infra.exceptions import ConfigurationError


def test_default_input_uses_srt_source(stream_settings):
    description = build_input_pipeline(stream_settings)
    assert description.startswith("srtsrc name=src uri=srt://127.0.0.1:9000?mode=listener")
    assert 'identity name="videoinput"' in description
    assert 'identity name="audioinput"' in description


def test_custom_input_pipeline_wins(stream_settings):
    settings = replace(stream_settings, srt_in_uri=None, in_pipeline="videotestsrc ! videoinput.")
    assert build_input_pipeline(settings) == "videotestsrc ! videoinput."


def test_missing_input_raises(stream_settings):
    with pytest.raises(ConfigurationError, match="srt_in_uri or in_pipeline"):
        build_input_pipeline(replace(stream_settings, srt_in_uri=None))


def test_rtmp_output_uses_flvmux(stream_settings):
    description = build_output_pipeline(stream_settings)
    assert description.startswith("flvmux name=mux")
    assert 'location="rtmp://live.example.com/app/stream-key live=1"' in description


def test_srt_output_uses_mpegtsmux(stream_settings):
    settings = replace(stream_settings, out_uri="srt://relay.example.com:9000")
    assert build_output_pipeline(settings) == (
        "mpegtsmux name=mux ! queue ! srtsink name=sink uri=srt://relay.example.com:9000"
    )


@pytest.mark.parametrize(
    "out_uri,message",
    [
        (None, "Missing out_uri"),
        ("udp://239.0.0.1:5000", "Unexpected output stream protocol"),
    ],
)
def test_bad_output_raises(stream_settings, out_uri, message):
    with pytest.raises(ConfigurationError, match=message):
        build_output_pipeline(replace(stream_settings, out_uri=out_uri))


def test_encoders(stream_settings):
    assert build_encoder(stream_settings).startswith("x264enc bitrate=4500 tune=zerolatency speed-preset=slow")
    nvenc = build_encoder(replace(stream_settings, encoder="nvenc", bitrate=6000))
    assert nvenc.startswith("nvh264enc bitrate=6000 preset=low-latency-hq")
    with pytest.raises(ConfigurationError, match="Unexpected encoder"):
        build_encoder(replace(stream_settings, encoder="vp9"))


def test_full_description_sizes_delay_queues(stream_settings):
    description = build_pipeline_description(stream_settings)
    assert f"max-size-time={15 * SEC + SEC // 2}" in description
    assert "output-selector name=vsel" in description
    assert "volume name=vol volume=0" in description
    assert "video/x-raw,width=96,height=54" in description
    assert "gdkpixbufoverlay location=/tmp/censored.png" in description
    assert "x264enc" in description
    assert not any(line.lstrip().startswith("#") for line in description.splitlines())


def test_encoder_none_skips_encoding(stream_settings):
    description = build_pipeline_description(replace(stream_settings, encoder="none"))
    assert "x264enc" not in description
    assert "voaacenc" not in description


def test_pixelize_scale_must_be_positive(stream_settings):
    with pytest.raises(ConfigurationError):
        build_pipeline_description(replace(stream_settings, pixelize_scale=0))


def test_gst_escape_doubles_backslashes():
    assert gst_escape("C:\\overlay\\censored.png") == "C:\\\\overlay\\\\censored.png"
