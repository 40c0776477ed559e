from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException

from pyrad_das.config.schema import DasConfig
from pyrad_das.radius.dictionary import load_dictionary
from pyrad_das.udp.pyrad_codecs import PyradDasCodec
from pyrad_das.udp.server import DasEndpoint, DasEndpointError, start_das_endpoint

logger = logging.getLogger("pyrad_das")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config: DasConfig = app.state.das_config

    try:
        codec = PyradDasCodec(
            dictionary=load_dictionary(config.dictionary_path),
            require_message_authenticator=config.require_message_authenticator,
        )
        endpoint = await start_das_endpoint(config=config.to_server_config(), codec=codec)
    except (DasEndpointError, FileNotFoundError) as exc:
        # uvicorn swallows lifespan errors; keep it for whoever runs the server
        app.state.startup_error = exc
        raise

    app.state.endpoint = endpoint
    logger.info("UDP RADIUS DAS listening on %s:%s", *endpoint.local_address)

    try:
        yield
    finally:
        endpoint.close()
        app.state.endpoint = None
        logger.info("Shutdown complete")


def create_app(*, config: DasConfig) -> FastAPI:
    app = FastAPI(lifespan=lifespan)

    app.state.das_config = config
    app.state.endpoint = None
    app.state.startup_error = None

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/status")
    async def status() -> dict[str, Any]:
        endpoint: DasEndpoint | None = app.state.endpoint
        if endpoint is None or endpoint.is_closed:
            raise HTTPException(status_code=503, detail="DAS endpoint not running")

        return {
            "listen": {"host": endpoint.local_address[0], "port": endpoint.local_address[1]},
            "client_address": str(endpoint.client_address),
            "counters": endpoint.counters.as_dict(),
        }

    return app
