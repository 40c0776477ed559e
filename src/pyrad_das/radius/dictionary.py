from __future__ import annotations

import io
from pathlib import Path

from pyrad.dictionary import Dictionary

# FreeRADIUS-style dictionary covering the attributes a DAS exchange uses.
# No VALUE lines for Error-Cause: it decodes to a plain int.
DEFAULT_DICTIONARY = "\n".join(
    [
        "ATTRIBUTE User-Name 1 string",
        "ATTRIBUTE NAS-IP-Address 4 ipaddr",
        "ATTRIBUTE NAS-Port 5 integer",
        "ATTRIBUTE Framed-IP-Address 8 ipaddr",
        "ATTRIBUTE Reply-Message 18 string",
        "ATTRIBUTE State 24 octets",
        "ATTRIBUTE Class 25 octets",
        "ATTRIBUTE Session-Timeout 27 integer",
        "ATTRIBUTE Idle-Timeout 28 integer",
        "ATTRIBUTE Called-Station-Id 30 string",
        "ATTRIBUTE Calling-Station-Id 31 string",
        "ATTRIBUTE NAS-Identifier 32 string",
        "ATTRIBUTE Acct-Session-Id 44 string",
        "ATTRIBUTE Acct-Multi-Session-Id 50 string",
        "ATTRIBUTE Event-Timestamp 55 integer",
        "ATTRIBUTE NAS-Port-Type 61 integer",
        "ATTRIBUTE Message-Authenticator 80 octets",
        "ATTRIBUTE NAS-Port-Id 87 string",
        "ATTRIBUTE Chargeable-User-Identity 89 octets",
        "ATTRIBUTE NAS-IPv6-Address 95 ipv6addr",
        "ATTRIBUTE Error-Cause 101 integer",
        "",
    ]
)


def load_dictionary(path: str | Path | None = None) -> Dictionary:
    """
    Load a pyrad dictionary.

    Without a path the built-in DAS dictionary is used; a path points at a
    FreeRADIUS-style dictionary file (e.g. the one shipped with FreeRADIUS).
    """
    if path is None:
        return Dictionary(io.StringIO(DEFAULT_DICTIONARY))

    dict_path = Path(path)
    if not dict_path.exists():
        raise FileNotFoundError(f"Dictionary file not found: {dict_path}")
    return Dictionary(str(dict_path))
