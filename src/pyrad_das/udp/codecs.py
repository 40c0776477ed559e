from __future__ import annotations

from typing import Any, Mapping, Protocol


class CodecError(Exception):
    """Base class for everything the codec service reports."""


class DecodeError(CodecError):
    """Raw bytes are not a well-formed RADIUS packet."""


class AuthError(CodecError):
    """Request/Response Authenticator or Message-Authenticator mismatch."""


class AllocError(CodecError):
    """A response packet (or one of its attributes) could not be built."""


class SignError(CodecError):
    """Message-Authenticator / Response Authenticator could not be computed."""


class DasCodec(Protocol):
    """
    Wire codec consumed by the DAS processor.

    Requests and responses are opaque to the processor apart from
    `.code`, `.id` and `.authenticator`.
    """

    def decode(self, data: bytes) -> Any: ...

    def verify_authenticator(self, request: Any, secret: bytes) -> None: ...

    def new_response(self, code: int, identifier: int) -> Any: ...

    def add_integer_attribute(self, response: Any, attribute_type: int, value: int) -> None: ...

    def finish_and_sign(self, response: Any, secret: bytes, request_authenticator: bytes) -> None: ...

    def encode(self, response: Any) -> bytes: ...


class DasClientCodec(Protocol):
    """Client-side half of the codec, used by the test client."""

    def build_request(
        self,
        code: int,
        identifier: int,
        attributes: Mapping[str, Any],
        secret: bytes,
    ) -> bytes: ...

    def verify_response(self, data: bytes, request_authenticator: bytes, secret: bytes) -> Any: ...
