from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass
from typing import Any, Sequence

import uvicorn

from pyrad_das.api.app import create_app
from pyrad_das.config.loader import ConfigLoadError, load_config, validate_config
from pyrad_das.config.schema import DasConfig
from pyrad_das.radius.dictionary import load_dictionary
from pyrad_das.udp.pyrad_codecs import PyradDasCodec
from pyrad_das.udp.server import DasEndpointError, start_das_endpoint

LOG = logging.getLogger("pyrad_das")


@dataclass(frozen=True, slots=True)
class CliSettings:
    log_level: str

    # config
    config_path: str | None

    # DAS (UDP) overrides, None = take from config file
    bind_address: str | None
    port: int | None
    secret: str | None
    client_address: str | None
    dictionary_path: str | None

    # REST
    with_api: bool
    rest_host: str
    rest_port: int


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pyrad-das")

    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "info"),
        choices=("critical", "error", "warning", "info", "debug"),
        help="Log level (default: env LOG_LEVEL or info)",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="Run the RADIUS DAS endpoint (optionally with the status API)")

    # config
    serve.add_argument("--config", dest="config_path", default=None, help="YAML/JSON config file")

    # UDP DAS
    serve.add_argument("--bind-address", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--secret", default=None)
    serve.add_argument("--client-address", type=str, default=None)
    serve.add_argument("--dictionary-path", default=None)

    # REST
    serve.add_argument("--with-api", action="store_true", help="Serve /health and /status via FastAPI")
    serve.add_argument("--rest-host", type=str, default="127.0.0.1")
    serve.add_argument("--rest-port", type=int, default=4711)

    return parser


def parse_settings(argv: Sequence[str] | None) -> tuple[str, CliSettings]:
    ns = build_parser().parse_args(argv)

    settings = CliSettings(
        log_level=ns.log_level,
        config_path=ns.config_path,
        bind_address=ns.bind_address,
        port=ns.port,
        secret=ns.secret,
        client_address=ns.client_address,
        dictionary_path=ns.dictionary_path,
        with_api=ns.with_api,
        rest_host=ns.rest_host,
        rest_port=ns.rest_port,
    )
    return ns.cmd, settings


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def resolve_config(settings: CliSettings) -> DasConfig:
    """Config file values, overridden by whatever was given on the command line."""
    overrides: dict[str, Any] = {
        key: value
        for key, value in {
            "bind_address": settings.bind_address,
            "port": settings.port,
            "shared_secret": settings.secret,
            "client_address": settings.client_address,
            "dictionary_path": settings.dictionary_path,
        }.items()
        if value is not None
    }

    if settings.config_path is not None:
        return load_config(settings.config_path, overrides=overrides)

    return validate_config(overrides, source="command line")


async def install_shutdown_signals(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _handler() -> None:
        LOG.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: _handler())


async def run_uvicorn_app(settings: CliSettings, config: DasConfig, stop_event: asyncio.Event) -> None:
    """
    Runs uvicorn programmatically; the app lifespan owns the DAS endpoint.
    stop_event triggers graceful shutdown. A DAS startup failure inside the
    lifespan is re-raised here.
    """
    app = create_app(config=config)

    uv_config = uvicorn.Config(
        app=app,
        host=settings.rest_host,
        port=settings.rest_port,
        log_level=settings.log_level,
        loop="asyncio",
        lifespan="on",
        access_log=False,
        reload=False,
    )
    server = uvicorn.Server(uv_config)

    async def _watch_stop() -> None:
        await stop_event.wait()
        server.should_exit = True

    watcher = asyncio.create_task(_watch_stop())
    try:
        await server.serve()
    except SystemExit:
        # uvicorn exits on a failed lifespan startup
        if app.state.startup_error is None:
            raise
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    if app.state.startup_error is not None:
        raise app.state.startup_error


async def run_das(config: DasConfig, stop_event: asyncio.Event) -> None:
    """Run the bare UDP DAS endpoint until stop_event is set."""
    codec = PyradDasCodec(
        dictionary=load_dictionary(config.dictionary_path),
        require_message_authenticator=config.require_message_authenticator,
    )

    endpoint = await start_das_endpoint(config=config.to_server_config(), codec=codec)
    LOG.info("UDP RADIUS DAS listening on %s:%s", *endpoint.local_address)

    async with endpoint:
        await stop_event.wait()

    LOG.info("UDP RADIUS DAS stopped")


async def main_async(argv: Sequence[str] | None = None) -> int:
    _, settings = parse_settings(argv)
    setup_logging(settings.log_level)

    try:
        config = resolve_config(settings)
    except ConfigLoadError as exc:
        LOG.error("%s", exc)
        return 1

    stop_event = asyncio.Event()
    await install_shutdown_signals(stop_event)

    if settings.with_api:
        runner = run_uvicorn_app(settings, config, stop_event)
    else:
        runner = run_das(config, stop_event)

    try:
        await runner
    except (DasEndpointError, FileNotFoundError) as exc:
        LOG.error("DAS startup failed: %s", exc)
        return 1

    return 0


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(main_async(argv))


if __name__ == "__main__":
    raise SystemExit(main())
