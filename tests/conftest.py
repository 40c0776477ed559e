from __future__ import annotations

import socket

import pytest

from pyrad_das.radius.dictionary import load_dictionary
from pyrad_das.udp.pyrad_codecs import PyradDasCodec


@pytest.fixture
def codec() -> PyradDasCodec:
    return PyradDasCodec(dictionary=load_dictionary())


@pytest.fixture
def free_udp_port() -> int:
    """A loopback UDP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
