"""
GStreamer engine binding.

Runs one generation of the delay/redaction graph with PyGObject and reports
its lifecycle through the generation's EngineChannel:

- ``stream-start`` on the bus arms the delay queues and reports ``started``
- ``error`` / ``eos`` on the bus report ``ended``
- an optional output script runs alongside the pipeline; a non-zero exit
  reports ``ended``
- with ``debug`` set, queue levels are logged once per second

All of it is released by :meth:`GstEngine.stop`, which is idempotent.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import Any

from streamdelay.engine.base import EngineChannel, RenderCommand
from streamdelay.engine.pipeline import (
    DEBUG_QUEUE_NAMES,
    DELAY_QUEUE_NAMES,
    build_pipeline_description,
    delay_ns,
)
from streamdelay.infra.exceptions import ConfigurationError, EngineError, EngineUnavailableError
from streamdelay.runtime.config import StreamSettings

logger = logging.getLogger(__name__)

BUS_POLL_INTERVAL_NS = 100_000_000  # 100ms
DEBUG_INTERVAL_SECONDS = 1.0
SCRIPT_POLL_INTERVAL_SECONDS = 0.1
# Worker threads poll at least every 100ms
THREAD_JOIN_TIMEOUT_SECONDS = 0.2

_gst_module: Any = None


def load_gst() -> Any:
    """Import and initialise GStreamer on first use."""
    global _gst_module
    if _gst_module is not None:
        return _gst_module
    try:
        import gi

        gi.require_version("Gst", "1.0")
        from gi.repository import Gst
    except (ImportError, ValueError) as exc:
        raise EngineUnavailableError(
            "GStreamer runtime is not available. Install PyGObject and GStreamer 1.0 "
            "to run the stream engine."
        ) from exc
    Gst.init(None)
    _gst_module = Gst
    return Gst


class GstEngine:
    """One running generation of the GStreamer graph."""

    def __init__(self, settings: StreamSettings, channel: EngineChannel, gst: Any, description: str):
        self.settings = settings
        self.channel = channel
        self._gst = gst
        self._description = description
        self._pipeline: Any = None
        self._video_selector: Any = None
        self._volume: Any = None
        self._stop_event = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False
        self._bus_thread: threading.Thread | None = None
        self._debug_thread: threading.Thread | None = None
        self._script: subprocess.Popen | None = None
        self._script_thread: threading.Thread | None = None

    @property
    def generation(self) -> int:
        return self.channel.generation

    def start(self) -> None:
        Gst = self._gst
        if self.settings.debug:
            logger.info("Pipeline (generation %d):\n%s", self.generation, self._description)
        try:
            self._pipeline = Gst.parse_launch(self._description)
        except Exception as exc:
            raise ConfigurationError(f"Invalid pipeline description: {exc}") from exc

        self._video_selector = self._pipeline.get_by_name("vsel")
        self._volume = self._pipeline.get_by_name("vol")

        self._bus_thread = threading.Thread(
            target=self._watch_bus,
            name=f"streamdelay-gst-bus-{self.generation}",
            daemon=True,
        )
        self._bus_thread.start()

        if self.settings.out_script:
            self._start_script(self.settings.out_script)

        result = self._pipeline.set_state(Gst.State.PLAYING)
        if result == Gst.StateChangeReturn.FAILURE:
            # The bus carries the error and reports ``ended``
            logger.warning("Pipeline generation %d failed to enter PLAYING", self.generation)

        if self.settings.debug:
            self._debug_thread = threading.Thread(
                target=self._debug_loop,
                name=f"streamdelay-gst-debug-{self.generation}",
                daemon=True,
            )
            self._debug_thread.start()

    def send(self, command: RenderCommand) -> None:
        if self._stopped or self._pipeline is None:
            return
        if command is RenderCommand.RENDER_NORMAL:
            pad_name, volume = "src_0", 1.0
        elif command is RenderCommand.RENDER_CENSORED:
            pad_name, volume = "src_1", 0.0
        else:
            logger.warning("Unexpected engine command: %r", command)
            return
        if self._video_selector is not None:
            pad = self._video_selector.get_static_pad(pad_name)
            if pad is not None:
                self._video_selector.set_property("active-pad", pad)
        if self._volume is not None:
            self._volume.set_property("volume", volume)
        logger.debug("Generation %d applied %s", self.generation, command.value)

    def stop(self) -> None:
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        # Nothing is delivered for this generation past this point
        self.channel.close()
        self._stop_event.set()

        if self._pipeline is not None:
            self._pipeline.set_state(self._gst.State.NULL)

        if self._script is not None and self._script.poll() is None:
            self._script.kill()

        current = threading.current_thread()
        for thread in (self._bus_thread, self._debug_thread, self._script_thread):
            if thread is not None and thread.is_alive() and thread is not current:
                thread.join(timeout=THREAD_JOIN_TIMEOUT_SECONDS)

        if self._script is not None:
            self._script.wait()

        self._pipeline = None
        self._video_selector = None
        self._volume = None
        logger.info("Engine generation %d stopped", self.generation)

    # ----------------------------------------------------------------- plumbing

    def _watch_bus(self) -> None:
        Gst = self._gst
        bus = self._pipeline.get_bus()
        mask = (
            Gst.MessageType.ERROR
            | Gst.MessageType.EOS
            | Gst.MessageType.STREAM_START
            | Gst.MessageType.WARNING
        )
        while not self._stop_event.is_set():
            message = bus.timed_pop_filtered(BUS_POLL_INTERVAL_NS, mask)
            if message is None:
                continue
            msg_type = message.type
            if msg_type == Gst.MessageType.ERROR:
                err, debug = message.parse_error()
                logger.error("Pipeline error: %s (%s)", err, debug)
                self.channel.ended(f"error: {err}")
            elif msg_type == Gst.MessageType.EOS:
                logger.info("Pipeline reached EOS")
                self.channel.ended("eos")
            elif msg_type == Gst.MessageType.STREAM_START:
                self._arm_delay_queues()
                self.channel.started()
            elif msg_type == Gst.MessageType.WARNING and self.settings.debug:
                warn, debug = message.parse_warning()
                logger.warning("Pipeline warning: %s (%s)", warn, debug)

    def _arm_delay_queues(self) -> None:
        threshold = delay_ns(self.settings)
        for name in DELAY_QUEUE_NAMES:
            queue = self._pipeline.get_by_name(name) if self._pipeline else None
            if queue is not None:
                queue.set_property("min-threshold-time", threshold)

    def _start_script(self, command: str) -> None:
        logger.info("Starting output script: %s", command)
        try:
            self._script = subprocess.Popen(command, shell=True, stdin=subprocess.DEVNULL)
        except OSError as exc:
            raise EngineError(f"Failed to start output script: {exc}") from exc
        self._script_thread = threading.Thread(
            target=self._watch_script,
            name=f"streamdelay-script-{self.generation}",
            daemon=True,
        )
        self._script_thread.start()

    def _watch_script(self) -> None:
        script = self._script
        if script is None:
            return
        while not self._stop_event.is_set():
            try:
                code = script.wait(timeout=SCRIPT_POLL_INTERVAL_SECONDS)
            except subprocess.TimeoutExpired:
                continue
            if self._stop_event.is_set():
                return
            if code != 0:
                logger.warning("Output script exited with code %s", code)
                self.channel.ended(f"output script exited with code {code}")
            return

    def _debug_loop(self) -> None:
        while not self._stop_event.wait(DEBUG_INTERVAL_SECONDS):
            pipeline = self._pipeline
            if pipeline is None:
                return
            for tap in ("videoinput", "audioinput"):
                element = pipeline.get_by_name(tap)
                pad = element.get_static_pad("src") if element is not None else None
                caps = pad.get_current_caps() if pad is not None else None
                logger.info("%s caps: %s", tap, caps.to_string() if caps is not None else None)
            for name in DEBUG_QUEUE_NAMES:
                queue = pipeline.get_by_name(name)
                if queue is None:
                    continue
                logger.info(
                    "%s time: %s | bytes: %s | max-time: %s",
                    name,
                    queue.get_property("current-level-time"),
                    queue.get_property("current-level-bytes"),
                    queue.get_property("max-size-time"),
                )


def spawn_gst_engine(settings: StreamSettings, channel: EngineChannel) -> GstEngine:
    """EngineFactory for the GStreamer graph.

    Raises:
        ConfigurationError: the settings do not describe a valid graph, or
            GStreamer is not installed.
    """
    description = build_pipeline_description(settings)
    gst = load_gst()
    engine = GstEngine(settings, channel, gst, description)
    try:
        engine.start()
    except Exception:
        engine.stop()
        raise
    return engine
