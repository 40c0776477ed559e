from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass
from typing import Any, Mapping

from pyrad import packet as pyrad_packet
from pyrad.dictionary import Dictionary

from pyrad_das.radius.codes import (
    ATTR_MESSAGE_AUTHENTICATOR,
    AUTHENTICATOR_LENGTH,
    HEADER_LENGTH,
    MAX_PACKET_LENGTH,
    code_name,
)
from pyrad_das.udp.codecs import AllocError, AuthError, DecodeError, SignError


ZERO_AUTHENTICATOR = bytes(AUTHENTICATOR_LENGTH)

# type + length + 16 octet HMAC-MD5
_MESSAGE_AUTHENTICATOR_LENGTH = 2 + AUTHENTICATOR_LENGTH


@dataclass(frozen=True, slots=True)
class PyradDasCodec:
    """
    pyrad codec for RFC 5176 (DAS) traffic.

    pyrad does the attribute (de)serialisation against the dictionary. The
    authenticator arithmetic runs on the raw octets:

    - Request Authenticator:
      MD5(Code + Identifier + Length + 16 zero octets + Attributes + Secret)
    - Response Authenticator:
      MD5(Code + Identifier + Length + Request Authenticator + Attributes + Secret)
    - Message-Authenticator (RFC 3579 / RFC 5176):
      HMAC-MD5(Secret, packet with the Message-Authenticator value zeroed and
      the Authenticator field set to zeros for requests or to the Request
      Authenticator for responses)
    """

    dictionary: Dictionary
    require_message_authenticator: bool = True

    # -------------------------------
    # Server side
    # -------------------------------

    def decode(self, data: bytes) -> Any:
        if len(data) < HEADER_LENGTH:
            raise DecodeError(f"packet too short ({len(data)} octets)")

        (length,) = struct.unpack("!H", data[2:4])
        if length < HEADER_LENGTH or length > len(data):
            raise DecodeError(f"invalid Length field {length} for {len(data)} octets")
        if length > MAX_PACKET_LENGTH:
            raise DecodeError(f"packet too long ({length} octets)")

        # Octets beyond the Length field are padding (RFC 2865 section 3).
        raw = bytes(data[:length])

        try:
            packet = pyrad_packet.Packet(packet=raw, dict=self.dictionary)
        except pyrad_packet.PacketError as exc:
            raise DecodeError(str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            raise DecodeError(f"pyrad error: {exc}") from exc

        packet.raw_packet = raw
        return packet

    def verify_authenticator(self, request: Any, secret: bytes) -> None:
        raw: bytes | None = getattr(request, "raw_packet", None)
        if raw is None:
            raise AuthError("request carries no raw packet")

        expected = _md5(raw[:4], ZERO_AUTHENTICATOR, raw[HEADER_LENGTH:], secret)
        if not hmac.compare_digest(expected, raw[4:HEADER_LENGTH]):
            raise AuthError("Request Authenticator mismatch")

        self._check_message_authenticator(raw, ZERO_AUTHENTICATOR, secret)

    def new_response(self, code: int, identifier: int) -> Any:
        if not 0 <= code <= 255 or not 0 <= identifier <= 255:
            raise AllocError(f"cannot build response code={code} id={identifier}")

        return pyrad_packet.Packet(
            code=code,
            id=identifier,
            authenticator=ZERO_AUTHENTICATOR,
            dict=self.dictionary,
        )

    def add_integer_attribute(self, response: Any, attribute_type: int, value: int) -> None:
        if not 1 <= attribute_type <= 255:
            raise AllocError(f"invalid attribute type {attribute_type}")
        try:
            octets = struct.pack("!I", value)
        except struct.error as exc:
            raise AllocError(f"attribute {attribute_type}: {exc}") from exc

        response.setdefault(attribute_type, []).append(octets)

    def finish_and_sign(self, response: Any, secret: bytes, request_authenticator: bytes) -> None:
        if len(request_authenticator) != AUTHENTICATOR_LENGTH:
            raise SignError(f"request authenticator must be {AUTHENTICATOR_LENGTH} octets")

        if ATTR_MESSAGE_AUTHENTICATOR in response:
            del response[ATTR_MESSAGE_AUTHENTICATOR]
        response[ATTR_MESSAGE_AUTHENTICATOR] = [ZERO_AUTHENTICATOR]

        try:
            unsigned = _pack(response, request_authenticator)
        except (struct.error, ValueError) as exc:
            raise SignError(f"cannot serialise response: {exc}") from exc

        offset = len(unsigned) - _MESSAGE_AUTHENTICATOR_LENGTH
        response[ATTR_MESSAGE_AUTHENTICATOR] = [
            _message_authenticator(unsigned, request_authenticator, offset, secret)
        ]
        response.authenticator = _md5(
            unsigned[:4],
            request_authenticator,
            _attribute_octets(response),
            secret,
        )

    def encode(self, response: Any) -> bytes:
        return _pack(response, response.authenticator or ZERO_AUTHENTICATOR)

    # -------------------------------
    # Client side
    # -------------------------------

    def build_request(
        self,
        code: int,
        identifier: int,
        attributes: Mapping[str, Any],
        secret: bytes,
        *,
        with_message_authenticator: bool = True,
    ) -> bytes:
        """Build a signed Disconnect-/CoA-Request as a NAS would send it."""
        packet = self.new_response(code, identifier)

        for name, value in attributes.items():
            try:
                packet[name] = value
            except KeyError as exc:
                raise AllocError(f"attribute '{name}' not found in dictionary") from exc
            except (TypeError, ValueError) as exc:
                raise AllocError(f"attribute '{name}': {exc}") from exc

        if with_message_authenticator:
            packet[ATTR_MESSAGE_AUTHENTICATOR] = [ZERO_AUTHENTICATOR]
            unsigned = _pack(packet, ZERO_AUTHENTICATOR)
            offset = len(unsigned) - _MESSAGE_AUTHENTICATOR_LENGTH
            packet[ATTR_MESSAGE_AUTHENTICATOR] = [
                _message_authenticator(unsigned, ZERO_AUTHENTICATOR, offset, secret)
            ]

        attributes_octets = _attribute_octets(packet)
        header = struct.pack("!BBH", code, identifier, HEADER_LENGTH + len(attributes_octets))
        authenticator = _md5(header, ZERO_AUTHENTICATOR, attributes_octets, secret)
        return header + authenticator + attributes_octets

    def verify_response(self, data: bytes, request_authenticator: bytes, secret: bytes) -> Any:
        """Decode a DAS reply and check it answers the request it claims to."""
        reply = self.decode(data)
        raw: bytes = reply.raw_packet

        expected = _md5(raw[:4], request_authenticator, raw[HEADER_LENGTH:], secret)
        if not hmac.compare_digest(expected, raw[4:HEADER_LENGTH]):
            raise AuthError("Response Authenticator mismatch")

        self._check_message_authenticator(raw, request_authenticator, secret)
        return reply

    # -------------------------------
    # Helpers
    # -------------------------------

    def _check_message_authenticator(self, raw: bytes, authenticator: bytes, secret: bytes) -> None:
        offsets = _message_authenticator_offsets(raw)

        if len(offsets) > 1:
            raise AuthError("multiple Message-Authenticator attributes")

        if not offsets:
            if self.require_message_authenticator:
                raise AuthError("Message-Authenticator missing")
            return

        offset = offsets[0]
        if raw[offset + 1] != _MESSAGE_AUTHENTICATOR_LENGTH:
            raise AuthError(f"Message-Authenticator has invalid length {raw[offset + 1]}")

        received = raw[offset + 2 : offset + _MESSAGE_AUTHENTICATOR_LENGTH]
        expected = _message_authenticator(raw, authenticator, offset, secret)
        if not hmac.compare_digest(expected, received):
            raise AuthError("Message-Authenticator mismatch")


def packet_to_dict(packet: Any) -> dict[str, Any]:
    """Flatten a pyrad packet for logging and client output."""
    out: dict[str, Any] = {
        "code": packet.code,
        "_name": code_name(packet.code),
        "id": packet.id,
    }

    for key in packet.keys():
        values = [_jsonable(v) for v in packet[key]]
        out[str(key)] = values[0] if len(values) == 1 else values

    return out


def _attribute_octets(packet: Any) -> bytes:
    # pyrad's attribute serialiser (raw int keys pass through untouched)
    return packet._PktEncodeAttributes()


def _pack(packet: Any, authenticator: bytes) -> bytes:
    attributes = _attribute_octets(packet)
    length = HEADER_LENGTH + len(attributes)
    if length > MAX_PACKET_LENGTH:
        raise ValueError(f"packet too long ({length} octets)")

    header = struct.pack("!BBH", packet.code, packet.id, length)
    return header + authenticator + attributes


def _md5(*parts: bytes) -> bytes:
    return hashlib.md5(b"".join(parts)).digest()


def _message_authenticator(raw: bytes, authenticator: bytes, offset: int, secret: bytes) -> bytes:
    scratch = b"".join(
        [
            raw[:4],
            authenticator,
            raw[HEADER_LENGTH : offset + 2],
            ZERO_AUTHENTICATOR,
            raw[offset + _MESSAGE_AUTHENTICATOR_LENGTH :],
        ]
    )
    return hmac.new(secret, scratch, hashlib.md5).digest()


def _message_authenticator_offsets(raw: bytes) -> list[int]:
    offsets: list[int] = []
    pos = HEADER_LENGTH

    while pos + 2 <= len(raw):
        attr_type, attr_len = raw[pos], raw[pos + 1]
        if attr_len < 2:
            break
        if attr_type == ATTR_MESSAGE_AUTHENTICATOR:
            offsets.append(pos)
        pos += attr_len

    return offsets


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return value
