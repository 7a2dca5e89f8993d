"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from campus_connect.chat.backend import CampusBackend, set_backend
from campus_connect.config import AppSettings, RealtimeSettings
from campus_connect.main import app


@pytest.fixture
def settings():
    """Settings with short reconnect delays and request timeouts."""
    return AppSettings(
        realtime=RealtimeSettings(
            request_timeout_seconds=2.0,
            reconnect_base_delay_ms=1,
            reconnect_max_delay_ms=5,
            reconnect_jitter_ms=0,
            reconnect_max_attempts=3,
        )
    )


@pytest.fixture
def backend(settings):
    """A backend over a fresh in-memory database."""
    backend = CampusBackend.in_memory(settings)
    yield backend
    backend.close()


@pytest.fixture
def store(backend):
    return backend.store


@pytest.fixture
def api_client(backend):
    """Provide a TestClient bound to the in-memory backend.

    Used as a context manager so HTTP calls and WebSocket sessions share
    one event loop.
    """
    set_backend(backend)
    with TestClient(app) as client:
        yield client
    set_backend(None)
