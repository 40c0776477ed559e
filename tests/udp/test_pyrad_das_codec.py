from __future__ import annotations

import hashlib
import hmac
import struct

import pytest

from pyrad_das.radius.codes import (
    ATTR_ERROR_CAUSE,
    COA_REQUEST,
    DISCONNECT_NAK,
    DISCONNECT_REQUEST,
    ErrorCause,
)
from pyrad_das.udp.codecs import AllocError, AuthError, DecodeError, SignError
from pyrad_das.udp.pyrad_codecs import PyradDasCodec, packet_to_dict

SECRET = b"s3cr3t"


def _message_authenticator_offset(raw: bytes) -> int:
    pos = 20
    while pos < len(raw):
        if raw[pos] == 80:
            return pos
        pos += raw[pos + 1]
    raise AssertionError("no Message-Authenticator")


def test_build_request_follows_rfc5176(codec: PyradDasCodec) -> None:
    raw = codec.build_request(DISCONNECT_REQUEST, 7, {"User-Name": "alice"}, SECRET)

    code, identifier, length = struct.unpack("!BBH", raw[:4])
    assert (code, identifier, length) == (DISCONNECT_REQUEST, 7, len(raw))

    # Request Authenticator over the final packet with a zeroed authenticator field
    expected_auth = hashlib.md5(raw[:4] + bytes(16) + raw[20:] + SECRET).digest()
    assert raw[4:20] == expected_auth

    # Message-Authenticator over the packet with zeroed authenticator and MA value
    offset = _message_authenticator_offset(raw)
    assert raw[offset + 1] == 18
    scratch = raw[:4] + bytes(16) + raw[20 : offset + 2] + bytes(16) + raw[offset + 18 :]
    assert raw[offset + 2 : offset + 18] == hmac.new(SECRET, scratch, hashlib.md5).digest()


def test_decode_and_verify_request(codec: PyradDasCodec) -> None:
    raw = codec.build_request(COA_REQUEST, 42, {"User-Name": "alice", "Session-Timeout": 600}, SECRET)

    request = codec.decode(raw)
    assert request.code == COA_REQUEST
    assert request.id == 42
    assert request.authenticator == raw[4:20]
    assert request["User-Name"] == ["alice"]
    assert request["Session-Timeout"] == [600]

    codec.verify_authenticator(request, SECRET)


def test_decode_ignores_trailing_padding(codec: PyradDasCodec) -> None:
    raw = codec.build_request(DISCONNECT_REQUEST, 1, {"User-Name": "bob"}, SECRET)

    request = codec.decode(raw + b"\x00\x00\x00")
    assert request.raw_packet == raw
    codec.verify_authenticator(request, SECRET)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\x28\x01\x00",
        b"\x28\x01\x00\x10" + bytes(16),  # Length below header size
        b"\x28\x01\x00\x40" + bytes(16),  # Length beyond datagram
        b"\x28\x01\x00\x16" + bytes(16) + b"\x01\x01",  # attribute length < 2
    ],
)
def test_decode_rejects_malformed(codec: PyradDasCodec, data: bytes) -> None:
    with pytest.raises(DecodeError):
        codec.decode(data)


def test_verify_rejects_wrong_secret(codec: PyradDasCodec) -> None:
    request = codec.decode(codec.build_request(DISCONNECT_REQUEST, 3, {"User-Name": "alice"}, b"other"))

    with pytest.raises(AuthError, match="Request Authenticator"):
        codec.verify_authenticator(request, SECRET)


def test_verify_rejects_tampered_message_authenticator(codec: PyradDasCodec) -> None:
    raw = bytearray(codec.build_request(DISCONNECT_REQUEST, 3, {"User-Name": "alice"}, SECRET))
    offset = _message_authenticator_offset(bytes(raw))
    raw[offset + 2] ^= 0xFF
    # keep the Request Authenticator consistent so only the HMAC is wrong
    raw[4:20] = hashlib.md5(bytes(raw[:4]) + bytes(16) + bytes(raw[20:]) + SECRET).digest()

    request = codec.decode(bytes(raw))
    with pytest.raises(AuthError, match="Message-Authenticator mismatch"):
        codec.verify_authenticator(request, SECRET)


def test_message_authenticator_required_by_default(codec: PyradDasCodec) -> None:
    raw = codec.build_request(
        DISCONNECT_REQUEST, 3, {"User-Name": "alice"}, SECRET, with_message_authenticator=False
    )
    request = codec.decode(raw)

    with pytest.raises(AuthError, match="missing"):
        codec.verify_authenticator(request, SECRET)

    lenient = PyradDasCodec(dictionary=codec.dictionary, require_message_authenticator=False)
    lenient.verify_authenticator(lenient.decode(raw), SECRET)


def test_verify_rejects_duplicate_message_authenticator(codec: PyradDasCodec) -> None:
    raw = codec.build_request(DISCONNECT_REQUEST, 3, {"User-Name": "alice"}, SECRET)
    offset = _message_authenticator_offset(raw)
    duplicated = raw + raw[offset : offset + 18]
    duplicated = duplicated[:2] + struct.pack("!H", len(duplicated)) + duplicated[4:]
    duplicated = (
        duplicated[:4]
        + hashlib.md5(duplicated[:4] + bytes(16) + duplicated[20:] + SECRET).digest()
        + duplicated[20:]
    )

    with pytest.raises(AuthError, match="multiple"):
        codec.verify_authenticator(codec.decode(duplicated), SECRET)


def test_signed_response_verifies_against_request(codec: PyradDasCodec) -> None:
    raw_request = codec.build_request(DISCONNECT_REQUEST, 9, {"User-Name": "alice"}, SECRET)
    request = codec.decode(raw_request)

    response = codec.new_response(DISCONNECT_NAK, request.id)
    codec.add_integer_attribute(response, ATTR_ERROR_CAUSE, ErrorCause.UNSUPPORTED_SERVICE)
    codec.finish_and_sign(response, SECRET, request.authenticator)
    raw_response = codec.encode(response)

    reply = codec.verify_response(raw_response, request.authenticator, SECRET)
    assert reply.code == DISCONNECT_NAK
    assert reply.id == 9
    assert reply["Error-Cause"] == [405]

    with pytest.raises(AuthError):
        codec.verify_response(raw_response, bytes(16), SECRET)


def test_decode_of_encoded_response_keeps_code_id_and_attributes(codec: PyradDasCodec) -> None:
    response = codec.new_response(DISCONNECT_NAK, 200)
    codec.add_integer_attribute(response, ATTR_ERROR_CAUSE, 405)
    codec.finish_and_sign(response, SECRET, bytes(range(16)))

    decoded = codec.decode(codec.encode(response))
    dumped = packet_to_dict(decoded)

    assert dumped["code"] == DISCONNECT_NAK
    assert dumped["_name"] == "Disconnect-NAK"
    assert dumped["id"] == 200
    assert dumped["Error-Cause"] == 405
    assert list(decoded.keys()) == ["Error-Cause", "Message-Authenticator"]


def test_resigning_replaces_message_authenticator(codec: PyradDasCodec) -> None:
    response = codec.new_response(DISCONNECT_NAK, 1)
    codec.add_integer_attribute(response, ATTR_ERROR_CAUSE, 405)
    codec.finish_and_sign(response, SECRET, bytes(16))
    codec.finish_and_sign(response, SECRET, bytes(16))

    assert len(response[80]) == 1


def test_unsigned_response_still_encodes(codec: PyradDasCodec) -> None:
    response = codec.new_response(DISCONNECT_NAK, 5)
    codec.add_integer_attribute(response, ATTR_ERROR_CAUSE, 405)

    with pytest.raises(SignError):
        codec.finish_and_sign(response, SECRET, b"short")

    raw = codec.encode(response)
    assert raw[:2] == bytes([DISCONNECT_NAK, 5])
    assert codec.decode(raw)["Error-Cause"] == [405]


@pytest.mark.parametrize(("code", "identifier"), [(256, 1), (42, -1), (42, 256)])
def test_new_response_rejects_out_of_range(codec: PyradDasCodec, code: int, identifier: int) -> None:
    with pytest.raises(AllocError):
        codec.new_response(code, identifier)


def test_add_integer_attribute_rejects_bad_values(codec: PyradDasCodec) -> None:
    response = codec.new_response(DISCONNECT_NAK, 1)

    with pytest.raises(AllocError):
        codec.add_integer_attribute(response, ATTR_ERROR_CAUSE, -1)

    with pytest.raises(AllocError):
        codec.add_integer_attribute(response, 0, 405)


def test_build_request_rejects_unknown_attribute(codec: PyradDasCodec) -> None:
    with pytest.raises(AllocError, match="not found in dictionary"):
        codec.build_request(DISCONNECT_REQUEST, 1, {"No-Such-Attribute": "x"}, SECRET)
