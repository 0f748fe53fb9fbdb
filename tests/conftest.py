import os
import sys

import httpx
import pytest

# Ensure the repository root is on sys.path so tests can import the therapynotes package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fake_service import API, STREAM_API, FakeService  # noqa: E402
from therapynotes.client import TherapyNotesClient  # noqa: E402


@pytest.fixture(autouse=True)
def therapynotes_env(monkeypatch):
    """Start every test from a clean, latency-free configuration."""

    for name in list(os.environ):
        if name.startswith('THERAPYNOTES_'):
            monkeypatch.delenv(name)
    monkeypatch.delenv('LOG_LEVEL', raising=False)
    monkeypatch.setenv('THERAPYNOTES_SIMULATED_LATENCY', '0')
    monkeypatch.setenv('THERAPYNOTES_API_ENDPOINT', API)
    monkeypatch.setenv('THERAPYNOTES_STREAMING_API_ENDPOINT', STREAM_API)


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def make_client(service):
    def factory(**kwargs):
        http = httpx.AsyncClient(transport=service.transport())
        return TherapyNotesClient(http_client=http, **kwargs)

    return factory


@pytest.fixture
def networked(monkeypatch):
    monkeypatch.setenv('THERAPYNOTES_USE_MOCK_API', 'false')


@pytest.fixture
def simulated(monkeypatch):
    monkeypatch.setenv('THERAPYNOTES_USE_MOCK_API', 'true')


@pytest.fixture(params=['simulated', 'networked'])
def mode(request, monkeypatch):
    monkeypatch.setenv('THERAPYNOTES_USE_MOCK_API', 'true' if request.param == 'simulated' else 'false')
    return request.param


@pytest.fixture
def api(mode, make_client):
    return make_client()
