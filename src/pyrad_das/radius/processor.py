from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from ipaddress import IPv4Address
from typing import Any

from pyrad_das.radius.codes import code_name
from pyrad_das.radius.handlers import HandlerMap, default_handlers
from pyrad_das.udp.codecs import AllocError, AuthError, DasCodec, DecodeError, SignError
from pyrad_das.udp.pyrad_codecs import packet_to_dict


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DasCounters:
    received: int = 0
    dropped_unknown_client: int = 0
    dropped_malformed: int = 0
    dropped_bad_authenticator: int = 0
    dropped_unexpected_code: int = 0
    dropped_build_failure: int = 0
    sign_failures: int = 0
    replies_sent: int = 0
    transport_errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class DasProcessor:
    """
    Receive-validate-dispatch cycle for one DAS endpoint.

    handle_datagram() runs the whole cycle for a single datagram:
      - origin check (source address must be the trusted client)
      - decode
      - Request Authenticator / Message-Authenticator check
      - dispatch by request code to a handler
      - sign the response with the request's authenticator

    It returns the encoded reply or None. Nothing is kept between datagrams
    apart from the counters.
    """

    codec: DasCodec
    shared_secret: bytes
    client_address: IPv4Address
    handlers: HandlerMap = field(default_factory=default_handlers)
    counters: DasCounters = field(default_factory=DasCounters)

    def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> bytes | None:
        host, port = addr[0], addr[1]
        self.counters.received += 1
        logger.debug("DAS: Received %d bytes from %s:%d", len(data), host, port)

        if not self._is_trusted(host):
            self.counters.dropped_unknown_client += 1
            logger.debug("DAS: Drop message from unknown client %s:%d", host, port)
            return None

        try:
            request = self.codec.decode(data)
        except DecodeError as exc:
            self.counters.dropped_malformed += 1
            logger.debug("DAS: Parsing incoming RADIUS packet from %s:%d failed: %s", host, port, exc)
            return None

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("DAS: Request %s", _dump(request))

        try:
            self.codec.verify_authenticator(request, self.shared_secret)
        except AuthError as exc:
            self.counters.dropped_bad_authenticator += 1
            logger.debug("DAS: Invalid authenticator in packet from %s:%d - drop (%s)", host, port, exc)
            return None

        handler = self.handlers.get(request.code)
        if handler is None:
            self.counters.dropped_unexpected_code += 1
            logger.debug(
                "DAS: Unexpected RADIUS code %s (%s) in packet from %s:%d",
                request.code,
                code_name(request.code),
                host,
                port,
            )
            return None

        try:
            response = handler(request, self.codec)
        except AllocError as exc:
            self.counters.dropped_build_failure += 1
            logger.error("DAS: Failed to build reply for %s:%d: %s", host, port, exc)
            return None

        if response is None:
            return None

        logger.debug("DAS: Reply to %s:%d", host, port)

        try:
            self.codec.finish_and_sign(response, self.shared_secret, request.authenticator)
        except SignError as exc:
            # the unsigned reply is still sent, once
            self.counters.sign_failures += 1
            logger.warning("DAS: Failed to add Message-Authenticator attribute: %s", exc)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("DAS: Response %s", _dump(response))

        return self.codec.encode(response)

    def _is_trusted(self, host: str) -> bool:
        try:
            return IPv4Address(host) == self.client_address
        except ValueError:
            return False


def _dump(packet: Any) -> Any:
    try:
        return packet_to_dict(packet)
    except Exception:  # noqa: BLE001
        return f"<{code_name(packet.code)} id={packet.id}>"
