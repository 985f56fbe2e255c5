"""
Main CLI application using Typer.

``streamdelay start`` resolves the stream and API options, validates them,
then runs the controller behind the control API until interrupted.

Option precedence, lowest first: built-in defaults, the ``--config`` file
(TOML, YAML or JSON), environment variables (API options only), explicit options.
"""

from __future__ import annotations

import asyncio
import json
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
import yaml

from streamdelay.engine.gstreamer import load_gst, spawn_gst_engine
from streamdelay.engine.pipeline import build_pipeline_description
from streamdelay.infra.exceptions import ConfigurationError, EngineUnavailableError
from streamdelay.infra.logging import configure_logging, get_logger
from streamdelay.infra.settings import Settings, load_settings
from streamdelay.runtime.config import ENCODERS, StreamSettings
from streamdelay.runtime.controller import StreamController
from streamdelay.web.server import create_app, serve

app = typer.Typer(help="Delayed stream relay with operator-controlled censorship")


@app.callback()
def main():
    """streamdelay operator CLI"""


API_FIELDS = ("api_hostname", "api_port", "api_key")


@dataclass(frozen=True)
class ApiOptions:
    hostname: str = "localhost"
    port: int = 8404
    key: str = ""


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a TOML (``.toml``), YAML (``.yaml``/``.yml``) or JSON config file.

    Keys are normalized to snake_case.
    """
    path = Path(path)
    try:
        if path.suffix == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        elif path.suffix in (".yaml", ".yml"):
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        else:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except (tomllib.TOMLDecodeError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a table/object")
    return {key.replace("-", "_"): value for key, value in data.items()}


def resolve_options(
    cli_values: dict[str, Any],
    file_values: dict[str, Any] | None = None,
    env_settings: Settings | None = None,
) -> tuple[StreamSettings, ApiOptions]:
    """Merge defaults, config file, environment and CLI values."""
    file_values = file_values or {}
    env_settings = env_settings or load_settings()

    api = {k: v for k, v in file_values.items() if k in API_FIELDS}
    for name in env_settings.model_fields_set & set(API_FIELDS):
        api[name] = getattr(env_settings, name)
    api.update({k: v for k, v in cli_values.items() if k in API_FIELDS and v is not None})

    stream = StreamSettings.from_dict(file_values).merged(cli_values)
    options = ApiOptions(
        hostname=str(api.get("api_hostname", ApiOptions.hostname)),
        port=int(api.get("api_port", ApiOptions.port)),
        key=str(api.get("api_key", ApiOptions.key)),
    )
    return stream, options


def validate_options(stream: StreamSettings, api: ApiOptions) -> None:
    """Raise ConfigurationError for missing or conflicting options."""
    if stream.srt_in_uri and stream.in_pipeline:
        raise ConfigurationError("--srt-in-uri conflicts with --in-pipeline")
    if stream.out_uri and stream.out_pipeline:
        raise ConfigurationError("--out-uri conflicts with --out-pipeline")
    if not (stream.srt_in_uri or stream.in_pipeline):
        raise ConfigurationError("Either --srt-in-uri or --in-pipeline must be specified")
    if not (stream.out_uri or stream.out_pipeline):
        raise ConfigurationError("Either --out-uri or --out-pipeline must be specified")
    if not stream.overlay_img:
        raise ConfigurationError("Missing required option: --overlay-img")
    if not api.key:
        raise ConfigurationError("Missing required option: --api-key")
    if stream.encoder not in ENCODERS:
        raise ConfigurationError(
            f"Invalid encoder {stream.encoder!r} (choose from {', '.join(ENCODERS)})"
        )
    # Surfaces graph errors (bad output protocol, pixelize scale) before serving
    build_pipeline_description(stream)


async def run_service(stream: StreamSettings, api: ApiOptions, autostart: bool) -> None:
    controller = StreamController(stream, spawn_gst_engine)
    fastapi_app = create_app(controller, api.key, autostart=autostart)
    await serve(fastapi_app, api.hostname, api.port)


@app.command("start")
def start(
    config_file: str = typer.Option(None, "--config", "-c", help="Path to a TOML, YAML or JSON config file"),
    api_hostname: str = typer.Option(None, help="Override hostname the API server listens on"),
    api_port: int = typer.Option(None, help="Override port the API server listens on"),
    api_key: str = typer.Option(None, help="Secret key for accessing the API"),
    srt_in_uri: str = typer.Option(None, help="URI of input SRT stream"),
    in_pipeline: str = typer.Option(None, help="Custom GStreamer pipeline for input"),
    out_uri: str = typer.Option(None, help="URI of output stream (srt:// or rtmp://)"),
    out_pipeline: str = typer.Option(None, help="Custom GStreamer pipeline for output"),
    out_script: str = typer.Option(None, help="Script to run while the pipeline is running"),
    delay_seconds: float = typer.Option(None, help="Number of seconds to delay the stream [default: 15]"),
    restart_seconds: float = typer.Option(
        None, help="Seconds to wait before restarting the pipeline after an error [default: 3]"
    ),
    width: int = typer.Option(None, help="Width of stream [default: 1920]"),
    height: int = typer.Option(None, help="Height of stream [default: 1080]"),
    bitrate: int = typer.Option(None, help="Bitrate of stream in kbit/s [default: 4500]"),
    encoder: str = typer.Option(None, help="Encoder to use for h264: x264, nvenc or none [default: x264]"),
    x264_preset: str = typer.Option(None, help="x264 speed preset [default: slow]"),
    x264_psy_tune: str = typer.Option(None, help="x264 psychovisual tuning [default: none]"),
    x264_threads: int = typer.Option(None, help="x264 thread count, 0 for automatic [default: 0]"),
    nvenc_preset: str = typer.Option(None, help="nvenc preset [default: low-latency-hq]"),
    pixelize_scale: int = typer.Option(None, help="Pixelization factor when censored [default: 20]"),
    overlay_img: str = typer.Option(None, help="Image to overlay when censored"),
    debug: bool = typer.Option(None, "--debug/--no-debug", help="Log pipeline queue levels every second"),
    autostart: bool = typer.Option(None, "--start/--no-start", help="Start the stream immediately [default: start]"),
):
    """Run the delay relay and its control API."""
    cli_values = {k: v for k, v in locals().items() if k not in ("config_file", "autostart")}

    try:
        file_values = load_config_file(config_file) if config_file else {}
        stream, api = resolve_options(cli_values, file_values)
        validate_options(stream, api)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    if autostart is None:
        autostart = bool(file_values.get("start", True))

    env = load_settings()
    configure_logging(env.log_level, env.log_format)

    try:
        load_gst()
    except EngineUnavailableError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    get_logger(__name__).info(
        "Starting streamdelay",
        delay_seconds=stream.delay_seconds,
        api_hostname=api.hostname,
        api_port=api.port,
        autostart=autostart,
    )
    try:
        asyncio.run(run_service(stream, api, autostart))
    except KeyboardInterrupt:
        typer.echo("\nShutting down...")


def cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
