"""
GStreamer launch description builder for the delay/redaction graph.

The graph holds the input in a delay queue, then routes video through an
output-selector (pad ``src_0`` passthrough, ``src_1`` pixelized + overlay)
and audio through a volume element. Switching pads and volume is how the
engine renders normal or censored output without rebuilding anything.

Element names referenced by the engine binding:
    maindelayqueue, auxdelayqueue   delay queues (min-threshold-time set on start)
    vsel                            video output-selector
    vol                             audio volume
    videoinput, audioinput          identity taps used for debug stats
"""

from __future__ import annotations

from streamdelay.infra.exceptions import ConfigurationError
from streamdelay.runtime.config import StreamSettings

SEC = 1_000_000_000  # nanoseconds

DELAY_QUEUE_NAMES = ("maindelayqueue", "auxdelayqueue")
DEBUG_QUEUE_NAMES = (
    "maindelayqueue",
    "auxdelayqueue",
    "videoqueue",
    "audioqueue",
    "videobufqueue",
    "audiobufqueue",
)


def gst_escape(value: str) -> str:
    """Escape backslashes for pipeline syntax (e.g. Windows paths)."""
    return value.replace("\\", "\\\\")


def delay_ns(settings: StreamSettings) -> int:
    return int(settings.delay_seconds * SEC)


def _buffer_queue(settings: StreamSettings) -> str:
    return f"queue max-size-time={delay_ns(settings)} max-size-buffers=0 max-size-bytes=0"


def _drop_queue() -> str:
    return f"queue leaky=downstream max-size-time={1 * SEC} max-size-buffers=0 max-size-bytes=0"


def build_input_pipeline(settings: StreamSettings) -> str:
    """Default SRT/MPEG-TS input unless a custom input pipeline is configured."""
    if settings.in_pipeline:
        return settings.in_pipeline
    if not settings.srt_in_uri:
        raise ConfigurationError("Either srt_in_uri or in_pipeline must be specified")
    return (
        f"srtsrc name=src uri={settings.srt_in_uri} do-timestamp=true"
        " ! tsparse set-timestamps=true smoothing-latency=1000"
        " ! maindelayqueue. maindelayqueue. ! tsdemux name=demux\n"
        'demux. ! queue ! video/x-h264 ! h264parse ! video/x-h264 ! avdec_h264 ! identity name="videoinput"\n'
        'demux. ! queue ! parsebin ! decodebin ! audio/x-raw ! identity name="audioinput"'
    )


def build_output_pipeline(settings: StreamSettings) -> str:
    """Muxer + sink for the output URI unless a custom output pipeline is configured."""
    if settings.out_pipeline:
        return settings.out_pipeline
    out_uri = settings.out_uri
    if not out_uri:
        raise ConfigurationError("Missing out_uri")
    if out_uri.startswith("rtmp://"):
        return (
            "flvmux name=mux streamable=true ! queue"
            f' ! rtmpsink name=sink enable-last-sample=false location="{out_uri} live=1"'
        )
    if out_uri.startswith("srt://"):
        return f"mpegtsmux name=mux ! queue ! srtsink name=sink uri={out_uri}"
    raise ConfigurationError(f"Unexpected output stream protocol: {out_uri}")


def build_encoder(settings: StreamSettings) -> str:
    if settings.encoder == "x264":
        return (
            f"x264enc bitrate={settings.bitrate} tune=zerolatency"
            f" speed-preset={settings.x264_preset} byte-stream=true"
            f" threads={settings.x264_threads} psy-tune={settings.x264_psy_tune}"
            " key-int-max=60"
        )
    if settings.encoder == "nvenc":
        return (
            f"nvh264enc bitrate={settings.bitrate} preset={settings.nvenc_preset}"
            " rc-mode=cbr gop-size=60 ! queue ! h264parse config-interval=2"
        )
    raise ConfigurationError(f"Unexpected encoder: {settings.encoder}")


def build_pipeline_description(settings: StreamSettings) -> str:
    """
    Build the full launch description for one engine generation.

    Raises:
        ConfigurationError: when input/output or encoder settings cannot form
            a pipeline.
    """
    if settings.pixelize_scale <= 0:
        raise ConfigurationError("pixelize_scale must be greater than zero")

    in_pipeline = build_input_pipeline(settings)
    out_pipeline = build_output_pipeline(settings)

    pixelized_width = settings.width // settings.pixelize_scale
    pixelized_height = settings.height // settings.pixelize_scale
    main_delay = delay_ns(settings) + SEC // 2

    if settings.encoder == "none":
        audio_encode = ""
        video_encode = ""
    else:
        encoder = build_encoder(settings)
        buffer_queue = _buffer_queue(settings)
        audio_encode = f"! voaacenc bitrate=96000 ! aacparse ! {buffer_queue} name=audiobufqueue ! mux."
        video_encode = f"! {encoder} ! {buffer_queue} name=videobufqueue ! mux."

    drop_queue = _drop_queue()
    source = f"""
        # Main delay queue (encoded input by default, or video when input is split)
        queue name=maindelayqueue
          max-size-time={main_delay}
          max-size-buffers=0
          max-size-bytes=0

        # Auxiliary delay queue (audio when input is split)
        queue name=auxdelayqueue
          max-size-time={main_delay}
          max-size-buffers=0
          max-size-bytes=0

        {in_pipeline}

        # Video: passthrough (src_0) or pixelized with overlay (src_1)
        videoinput. ! output-selector name=vsel
        vsel. ! vfun.
        vsel.
          ! videoscale
          ! video/x-raw,width={pixelized_width},height={pixelized_height}
          ! videoscale method=nearest-neighbour ! video/x-raw,width={settings.width},height={settings.height}
          ! gdkpixbufoverlay location={gst_escape(settings.overlay_img)}
          ! vfun.
        funnel name=vfun ! {drop_queue} name=videoqueue {video_encode}

        # Audio: volume starts muted until the first render command
        audioinput. ! audioconvert ! volume name=vol volume=0 ! {drop_queue} name=audioqueue {audio_encode}
        {out_pipeline}
    """
    return strip_comments(source)


def strip_comments(source: str) -> str:
    return "\n".join(line for line in source.split("\n") if not line.lstrip().startswith("#"))
