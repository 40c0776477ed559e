from __future__ import annotations

from enum import IntEnum

from pyrad import packet as pyrad_packet

# ---------------------------------------------------------------------------
# RADIUS codes (RFC 5176 subset)
# ---------------------------------------------------------------------------

DISCONNECT_REQUEST: int = pyrad_packet.DisconnectRequest
DISCONNECT_NAK: int = pyrad_packet.DisconnectNAK
COA_REQUEST: int = pyrad_packet.CoARequest
COA_NAK: int = pyrad_packet.CoANAK

RADIUS_CODE_MAP: dict[int, str] = {
    1: "Access-Request",
    2: "Access-Accept",
    3: "Access-Reject",
    4: "Accounting-Request",
    5: "Accounting-Response",
    11: "Access-Challenge",
    40: "Disconnect-Request",
    41: "Disconnect-ACK",
    42: "Disconnect-NAK",
    43: "CoA-Request",
    44: "CoA-ACK",
    45: "CoA-NAK",
}

# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------

ATTR_MESSAGE_AUTHENTICATOR = 80
ATTR_ERROR_CAUSE = 101

HEADER_LENGTH = 20
AUTHENTICATOR_LENGTH = 16
MAX_PACKET_LENGTH = 4096


class ErrorCause(IntEnum):
    """Error-Cause values from RFC 5176 section 3.5."""

    RESIDUAL_SESSION_CONTEXT_REMOVED = 201
    INVALID_EAP_PACKET = 202
    UNSUPPORTED_ATTRIBUTE = 401
    MISSING_ATTRIBUTE = 402
    NAS_IDENTIFICATION_MISMATCH = 403
    INVALID_REQUEST = 404
    UNSUPPORTED_SERVICE = 405
    UNSUPPORTED_EXTENSION = 406
    INVALID_ATTRIBUTE_VALUE = 407
    ADMINISTRATIVELY_PROHIBITED = 501
    REQUEST_NOT_ROUTABLE = 502
    SESSION_CONTEXT_NOT_FOUND = 503
    SESSION_CONTEXT_NOT_REMOVABLE = 504
    OTHER_PROXY_PROCESSING_ERROR = 505
    RESOURCES_UNAVAILABLE = 506
    REQUEST_INITIATED = 507
    MULTIPLE_SESSION_SELECTION_UNSUPPORTED = 508


def code_name(code: int) -> str:
    return RADIUS_CODE_MAP.get(code, f"Unknown-Code-{code}")


__all__ = [
    "DISCONNECT_REQUEST",
    "DISCONNECT_NAK",
    "COA_REQUEST",
    "COA_NAK",
    "RADIUS_CODE_MAP",
    "ATTR_MESSAGE_AUTHENTICATOR",
    "ATTR_ERROR_CAUSE",
    "HEADER_LENGTH",
    "AUTHENTICATOR_LENGTH",
    "MAX_PACKET_LENGTH",
    "ErrorCause",
    "code_name",
]
