"""Shared fixtures: a fake catalog behind httpx.MockTransport."""

from urllib.parse import parse_qs

import httpx
import pytest

from webpac.client import WebpacClient
from webpac.config import ILSConfig
from webpac.models import PatronAttributes
from webpac.transport import RetryPolicy, Transport


class FakeCatalog:
    """Answers requests from a list of (matcher, response) routes and records them."""

    def __init__(self):
        self.routes = []
        self.requests: list[httpx.Request] = []

    def route(self, fragment: str, body: str = "", method: str | None = None, **kwargs):
        self.routes.append((fragment, method, body, kwargs))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        for fragment, method, body, kwargs in self.routes:
            if fragment in url and (method is None or method == request.method):
                if callable(body):
                    return body(request)
                return httpx.Response(kwargs.get("status", 200), text=body, headers=kwargs.get("headers"))
        return httpx.Response(404, text="<html>Not found</html>")

    def form(self, index: int) -> dict[str, list[str]]:
        return parse_qs(self.requests[index].content.decode())

    def transport(self, config: ILSConfig, session_id: str = "21234000001") -> Transport:
        return Transport(
            config,
            session_id=session_id,
            retry_policy=RetryPolicy(max_attempts=10, backoff=None),
            http_transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def config(tmp_path):
    return ILSConfig(
        host="catalog.example.org",
        markup_version="2007",
        cookie_dir=tmp_path,
        race_delay=0,
        settle_delay=0,
    )


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def patron():
    return PatronAttributes(
        record_number="1234567",
        barcode="21234000001",
        name="Doe, Jane",
        patron_type="1",
    )


@pytest.fixture
def client(config, catalog, patron):
    return WebpacClient(
        config,
        "21234000001",
        "4321",
        patron=patron,
        transport=catalog.transport(config),
    )
