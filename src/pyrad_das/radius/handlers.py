from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from pyrad_das.radius.codes import (
    ATTR_ERROR_CAUSE,
    COA_NAK,
    COA_REQUEST,
    DISCONNECT_NAK,
    DISCONNECT_REQUEST,
    ErrorCause,
)
from pyrad_das.udp.codecs import DasCodec


class RequestHandler(Protocol):
    """
    Builds the response for one kind of authenticated DAS request.

    Returning None means "no response". Construction problems are raised as
    AllocError and handled by the processor.
    """

    def __call__(self, request: Any, codec: DasCodec) -> Any | None: ...


@dataclass(frozen=True, slots=True)
class UnsupportedServiceHandler:
    """NAK the request with Error-Cause 405 (Unsupported Service)."""

    nak_code: int

    def __call__(self, request: Any, codec: DasCodec) -> Any | None:
        response = codec.new_response(self.nak_code, request.id)
        codec.add_integer_attribute(response, ATTR_ERROR_CAUSE, ErrorCause.UNSUPPORTED_SERVICE)
        return response


HandlerMap = Mapping[int, RequestHandler]


def default_handlers() -> dict[int, RequestHandler]:
    """
    Disconnect and CoA are both rejected until session policy exists.

    Plug real policy in by passing a different mapping to the endpoint.
    """
    return {
        DISCONNECT_REQUEST: UnsupportedServiceHandler(nak_code=DISCONNECT_NAK),
        COA_REQUEST: UnsupportedServiceHandler(nak_code=COA_NAK),
    }
