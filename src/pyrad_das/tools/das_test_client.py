from __future__ import annotations

import argparse
import asyncio
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from pyrad import packet as pyrad_packet

from pyrad_das.radius.codes import COA_REQUEST, DISCONNECT_REQUEST, code_name
from pyrad_das.radius.dictionary import load_dictionary
from pyrad_das.config.schema import DEFAULT_DAS_PORT
from pyrad_das.udp.codecs import CodecError, DasClientCodec
from pyrad_das.udp.pyrad_codecs import PyradDasCodec, packet_to_dict

LOG = logging.getLogger("pyrad_das.test_client")


# -------------------------------
# Commands (PEP8 python names)
# -------------------------------


@dataclass(frozen=True, slots=True)
class DisconnectCommand:
    """Send a Disconnect-Request.

    Use pythonic field names; the client maps them to the correct RADIUS AVPs.
    Extra AVPs are passed by *RADIUS attribute name* in extra_avps.
    """

    user_name: str | None = None
    acct_session_id: str | None = None
    nas_identifier: str | None = None
    nas_ip_address: str | None = None
    calling_station_id: str | None = None

    extra_avps: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CoACommand:
    """Send a CoA-Request."""

    user_name: str | None = None
    acct_session_id: str | None = None
    nas_identifier: str | None = None
    nas_ip_address: str | None = None
    calling_station_id: str | None = None
    session_timeout: int | None = None

    extra_avps: dict[str, Any] = field(default_factory=dict)


# -------------------------------
# Errors
# -------------------------------


class DasClientError(RuntimeError):
    pass


class DasNoReplyError(DasClientError):
    pass


# -------------------------------
# Client
# -------------------------------


class DasTestClient:
    """Lab/test client that plays the NAS side of RFC 5176.

    - builds Disconnect-/CoA-Requests with Message-Authenticator
    - retransmits the same datagram on timeout
    - only accepts replies that verify against the request authenticator
    """

    def __init__(
        self,
        *,
        server: str = "127.0.0.1",
        port: int = DEFAULT_DAS_PORT,
        secret: str = "testsecret",
        dictionary_path: str | None = None,
        timeout: float = 2.0,
        retries: int = 1,
        logger: logging.Logger | None = None,
        debug: bool = False,
    ) -> None:
        self.logger = logger or LOG
        self.debug = debug

        self.server = server
        self.port = port
        self.secret = secret.encode()
        self.timeout = timeout
        self.retries = max(1, retries)

        self.codec: DasClientCodec = PyradDasCodec(dictionary=load_dictionary(dictionary_path))
        self._next_id = pyrad_packet.CreateID()

        if self.debug:
            self.logger.setLevel(logging.DEBUG)

        self.logger.debug(
            "DasTestClient init server=%s port=%s timeout=%.3f retries=%s debug=%s",
            self.server,
            self.port,
            timeout,
            retries,
            self.debug,
        )

    async def send_disconnect_async(self, command: DisconnectCommand) -> dict[str, Any]:
        return await asyncio.to_thread(self.send_disconnect, command)

    async def send_coa_async(self, command: CoACommand) -> dict[str, Any]:
        return await asyncio.to_thread(self.send_coa, command)

    def send_disconnect(self, command: DisconnectCommand) -> dict[str, Any]:
        """Send Disconnect-Request and return request/reply dict."""
        attributes = self._session_avps(command)
        attributes.update(command.extra_avps)
        return self.send_request(DISCONNECT_REQUEST, attributes)

    def send_coa(self, command: CoACommand) -> dict[str, Any]:
        """Send CoA-Request and return request/reply dict."""
        attributes = self._session_avps(command)
        if command.session_timeout is not None:
            attributes["Session-Timeout"] = command.session_timeout
        attributes.update(command.extra_avps)
        return self.send_request(COA_REQUEST, attributes)

    def send_request(self, code: int, attributes: Mapping[str, Any]) -> dict[str, Any]:
        identifier = self._allocate_id()

        try:
            raw_request = self.codec.build_request(code, identifier, attributes, self.secret)
        except CodecError as exc:
            raise DasClientError(f"Cannot build {code_name(code)}: {exc}") from exc

        request_dump: dict[str, Any] = {"code": code, "id": identifier, **attributes}
        self._log_packet("→", code_name(code), request_dump)

        start = time.perf_counter()
        reply = self._exchange(raw_request)
        rtt_ms = (time.perf_counter() - start) * 1000.0
        self._log_rtt(code_name(code), rtt_ms)

        reply_dump = packet_to_dict(reply)
        self._log_packet("←", reply_dump["_name"], reply_dump)

        return {"request": request_dump, "reply": reply_dump}

    # -------------------------------
    # Transport
    # -------------------------------

    def _exchange(self, raw_request: bytes) -> Any:
        request_authenticator = raw_request[4:20]
        target = (self.server, self.port)

        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                for attempt in range(self.retries):
                    sock.sendto(raw_request, target)
                    deadline = time.monotonic() + self.timeout

                    while (remaining := deadline - time.monotonic()) > 0:
                        sock.settimeout(remaining)
                        try:
                            data, source = sock.recvfrom(4096)
                        except socket.timeout:
                            break

                        try:
                            return self.codec.verify_response(data, request_authenticator, self.secret)
                        except CodecError as exc:
                            self.logger.debug("Ignoring invalid reply from %s:%s: %s", *source, exc)

                    self.logger.debug("No reply from %s:%s (attempt %d)", *target, attempt + 1)
        except OSError as exc:
            raise DasClientError(f"Network error: {exc}") from exc

        raise DasNoReplyError("DAS does not reply (timeout)")

    def _allocate_id(self) -> int:
        identifier = self._next_id
        self._next_id = (self._next_id + 1) % 256
        return identifier

    # -------------------------------
    # AVP helpers
    # -------------------------------

    @staticmethod
    def _session_avps(command: DisconnectCommand | CoACommand) -> dict[str, Any]:
        attributes: dict[str, Any] = {}
        for avp, value in (
            ("User-Name", command.user_name),
            ("Acct-Session-Id", command.acct_session_id),
            ("NAS-Identifier", command.nas_identifier),
            ("NAS-IP-Address", command.nas_ip_address),
            ("Calling-Station-Id", command.calling_station_id),
        ):
            if value is not None:
                attributes[avp] = value
        return attributes

    # -------------------------------
    # Logging helpers
    # -------------------------------

    def _log_packet(self, arrow: str, title: str, data: Mapping[str, Any]) -> None:
        if not self.debug:
            return
        self.logger.debug("%s %s %s:%s", arrow, title, self.server, self.port)
        for key, value in data.items():
            self.logger.debug("    %s = %r", key, value)

    def _log_rtt(self, title: str, rtt_ms: float) -> None:
        if not self.debug:
            return
        self.logger.debug("⏱ %s RTT: %.2f ms", title, rtt_ms)


# -------------------------------
# Optional CLI entry for labs
# -------------------------------


def _build_cli() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pyrad-das-client")

    p.add_argument("--server", default="127.0.0.1")
    p.add_argument("--port", type=int, default=DEFAULT_DAS_PORT)
    p.add_argument("--secret", default="testsecret")
    p.add_argument("--dictionary", default=None)
    p.add_argument("--timeout", type=float, default=2.0)
    p.add_argument("--retries", type=int, default=1)
    p.add_argument("--debug", action="store_true", help="Enable debug logging (request/reply + RTT)")

    sub = p.add_subparsers(dest="cmd", required=True)

    for name, help_text in (("disconnect", "Send Disconnect-Request"), ("coa", "Send CoA-Request")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--user-name", default=None)
        cmd.add_argument("--acct-session-id", default=None)
        cmd.add_argument("--nas-identifier", default=None)
        cmd.add_argument("--nas-ip-address", default=None)
        cmd.add_argument("--calling-station-id", default=None)
        if name == "coa":
            cmd.add_argument("--session-timeout", type=int, default=None)

    return p


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = _build_cli().parse_args(argv)

    if args.debug:
        logging.getLogger("pyrad_das.test_client").setLevel(logging.DEBUG)

    client = DasTestClient(
        server=args.server,
        port=args.port,
        secret=args.secret,
        dictionary_path=args.dictionary,
        timeout=args.timeout,
        retries=args.retries,
        debug=args.debug,
    )

    common = {
        "user_name": args.user_name,
        "acct_session_id": args.acct_session_id,
        "nas_identifier": args.nas_identifier,
        "nas_ip_address": args.nas_ip_address,
        "calling_station_id": args.calling_station_id,
    }

    try:
        if args.cmd == "disconnect":
            print(client.send_disconnect(DisconnectCommand(**common)))
            return 0

        if args.cmd == "coa":
            print(client.send_coa(CoACommand(session_timeout=args.session_timeout, **common)))
            return 0
    except DasClientError as exc:
        LOG.error("%s", exc)
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
