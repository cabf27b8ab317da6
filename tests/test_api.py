"""Tests for the HTTP status endpoints and the WebSocket sink."""

import time

import pytest
from fastapi.testclient import TestClient

from ais_relay.api import create_app
from ais_relay.config import Settings
from ais_relay.service import RelayService


@pytest.fixture
def service() -> RelayService:
    return RelayService(Settings(websocket_port=0))


@pytest.fixture
def client(service: RelayService) -> TestClient:
    return TestClient(create_app(service))


def _wait_for(condition, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def test_health_endpoint(client: TestClient) -> None:
    """Test health endpoint reports a stopped relay as degraded."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "ais-relay"
    assert data["status"] == "degraded"
    assert data["tcp"] is False


def test_status_endpoint(client: TestClient) -> None:
    """Test status endpoint returns cycle and client statistics."""
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == "0.1.0"
    assert data["cycle_count"] == 0
    assert data["last_cycle"] is None
    assert "filter" in data
    assert "clients" in data


@pytest.mark.parametrize("path", ["/", "/ws"])
def test_websocket_registers_client(
    client: TestClient, service: RelayService, path: str
) -> None:
    """Test a WebSocket client is tracked while connected."""
    broadcaster = service.broadcaster
    with client.websocket_connect(path) as websocket:
        _wait_for(lambda: len(broadcaster.ws_clients) == 1)
        assert broadcaster.has_new_clients
        websocket.send_text("ignored")

    _wait_for(lambda: not broadcaster.ws_clients)
    assert not broadcaster.has_new_clients
