from __future__ import annotations

import socket

import pytest
from fastapi.testclient import TestClient

from pyrad_das.api.app import create_app
from pyrad_das.config.loader import validate_config
from pyrad_das.udp.server import ResourceError


def test_health_and_status(free_udp_port: int) -> None:
    config = validate_config(
        {
            "port": free_udp_port,
            "shared_secret": "s3cr3t",
            "client_address": "10.0.0.5",
            "bind_address": "127.0.0.1",
        }
    )
    app = create_app(config=config)

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}

        body = client.get("/status").json()
        assert body["listen"] == {"host": "127.0.0.1", "port": free_udp_port}
        assert body["client_address"] == "10.0.0.5"
        assert body["counters"]["received"] == 0
        assert body["counters"]["replies_sent"] == 0

    # lifespan finished: endpoint is closed
    assert app.state.endpoint is None


def test_status_without_running_endpoint() -> None:
    config = validate_config({"port": 3799, "shared_secret": "s3cr3t", "client_address": "10.0.0.5"})
    app = create_app(config=config)

    # no lifespan -> endpoint never started
    client = TestClient(app)
    response = client.get("/status")

    assert response.status_code == 503


def test_startup_failure_is_recorded_on_app_state() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as taken:
        taken.bind(("127.0.0.1", 0))
        config = validate_config(
            {
                "port": taken.getsockname()[1],
                "shared_secret": "s3cr3t",
                "client_address": "10.0.0.5",
                "bind_address": "127.0.0.1",
            }
        )
        app = create_app(config=config)

        with pytest.raises(ResourceError):
            with TestClient(app):
                pass

    assert isinstance(app.state.startup_error, ResourceError)
    assert app.state.endpoint is None
