import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app.api import endpoints
from backend.app.main import app
from backend.app.services.catalog import MovieCatalog
from backend.app.services.streamer import stream_proxy
from backend.app.services.upstream import UpstreamClient

MEDIA_URL = "https://bcdnw.hakunaymatata.com/resource/6b1f0c.mp4?sign=abc123&t=1700000000"


async def streamed(*chunks):
    """Upstream body that arrives chunk by chunk, like a real socket read."""
    for chunk in chunks:
        yield chunk


class RecordingUpstream:
    """httpx.MockTransport handler that records every outbound request."""

    def __init__(self):
        self.requests = []
        self.handler = lambda request: httpx.Response(404)

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    def paths(self):
        return [request.url.path for request in self.requests]


@pytest.fixture
def cdn(monkeypatch):
    upstream = RecordingUpstream()
    monkeypatch.setattr(stream_proxy, "transport", httpx.MockTransport(upstream))
    return upstream


@pytest.fixture
def catalog_host(monkeypatch):
    upstream = RecordingUpstream()
    client = UpstreamClient(host="h5.aoneroom.com", transport=httpx.MockTransport(upstream))
    monkeypatch.setattr(endpoints, "catalog", MovieCatalog(client))
    return upstream


@pytest.fixture
def client():
    return TestClient(app)
