from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Any

from pyrad_das.radius.handlers import HandlerMap, default_handlers
from pyrad_das.radius.processor import DasCounters, DasProcessor
from pyrad_das.udp.codecs import DasCodec


logger = logging.getLogger(__name__)


class DasEndpointError(Exception):
    pass


class ConfigError(DasEndpointError):
    """Invalid endpoint configuration record."""


class ResourceError(DasEndpointError):
    """Socket could not be opened/bound or registered with the event loop."""


@dataclass(slots=True)
class DasServerConfig:
    port: int
    shared_secret: bytes
    client_address: IPv4Address | str | None
    host: str = "0.0.0.0"


class DasProtocol(asyncio.DatagramProtocol):
    """
    Thin UDP protocol adapter.

    - hands each datagram to the processor, synchronously
    - sends the reply (if any) to the exact address/port it came from
    - logs transport errors; they never stop the endpoint
    """

    def __init__(self, *, processor: DasProcessor) -> None:
        self._processor = processor
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def counters(self) -> DasCounters:
        return self._processor.counters

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        logger.info("DAS UDP transport ready")

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if self._transport is None:
            return

        try:
            reply = self._processor.handle_datagram(data, addr)
        except Exception:
            logger.exception("DAS: Unhandled exception processing datagram from %s", addr)
            return

        if reply is None:
            return

        if self._transport.is_closing():
            logger.debug("DAS: Transport closing, reply to %s dropped", addr)
            return

        self._transport.sendto(reply, addr)
        self._processor.counters.replies_sent += 1

    def error_received(self, exc: Exception) -> None:
        self._processor.counters.transport_errors += 1
        logger.error("DAS: UDP error received: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self._transport = None
        logger.info("DAS UDP transport closed (%s)", exc)


class DasEndpoint:
    """
    A bound, registered DAS socket plus the processor behind it.

    Created by start_das_endpoint(); close() is the only teardown path and is
    safe to call more than once.
    """

    def __init__(
        self,
        *,
        transport: asyncio.DatagramTransport,
        processor: DasProcessor,
    ) -> None:
        self._transport: asyncio.DatagramTransport | None = transport
        self._processor: DasProcessor | None = processor
        self.client_address = processor.client_address
        self.counters = processor.counters

        sockname = transport.get_extra_info("sockname")
        self.local_address: tuple[str, int] = (sockname[0], sockname[1])

    @property
    def is_closed(self) -> bool:
        return self._transport is None

    def close(self) -> None:
        if self._transport is None:
            return

        # asyncio removes the reader before the socket itself is closed
        self._transport.close()
        self._transport = None

        if self._processor is not None:
            self._processor.shared_secret = b""
            self._processor = None

        logger.info("DAS endpoint on %s:%s closed", *self.local_address)

    async def __aenter__(self) -> DasEndpoint:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


def validate_server_config(config: DasServerConfig) -> tuple[int, bytes, IPv4Address]:
    if not 0 < config.port <= 65535:
        raise ConfigError(f"DAS port must be in 1..65535, got {config.port}")

    if not config.shared_secret:
        raise ConfigError("DAS shared secret must not be empty")

    if config.client_address is None:
        raise ConfigError("DAS client address is required")

    try:
        client_address = IPv4Address(str(config.client_address))
    except ValueError as exc:
        raise ConfigError(f"DAS client address must be IPv4: {config.client_address}") from exc

    return config.port, bytes(config.shared_secret), client_address


def open_das_socket(host: str, port: int) -> socket.socket:
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        raise ResourceError(f"Failed to open UDP socket for RADIUS DAS: {exc}") from exc

    try:
        sock.setblocking(False)
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise ResourceError(f"Failed to bind RADIUS DAS socket to {host}:{port}: {exc}") from exc

    return sock


async def start_das_endpoint(
    *,
    config: DasServerConfig,
    codec: DasCodec,
    handlers: HandlerMap | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> DasEndpoint:
    """
    Validate the config, bind the UDP socket and register it with the loop.

    Raises ConfigError or ResourceError; the socket is closed again on any
    failure after it was opened.
    """
    port, shared_secret, client_address = validate_server_config(config)

    if loop is None:
        loop = asyncio.get_running_loop()

    processor = DasProcessor(
        codec=codec,
        shared_secret=shared_secret,
        client_address=client_address,
        handlers=handlers if handlers is not None else default_handlers(),
    )
    protocol = DasProtocol(processor=processor)

    sock = open_das_socket(config.host, port)
    try:
        transport, _ = await loop.create_datagram_endpoint(lambda: protocol, sock=sock)
    except (OSError, RuntimeError, ValueError) as exc:
        sock.close()
        raise ResourceError(f"Failed to register RADIUS DAS socket: {exc}") from exc

    endpoint = DasEndpoint(transport=transport, processor=processor)
    logger.info(
        "DAS listening on %s:%s (client %s)",
        endpoint.local_address[0],
        endpoint.local_address[1],
        client_address,
    )
    return endpoint
