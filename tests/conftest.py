"""
Shared fixtures: a cache root, a configuration, and a fake origin session.

``FakeOrigin`` stands in for ``requests.Session``. Routes map a requested path
to the response the origin gives after following its own redirects.
"""

import logging
from typing import Dict, List, Optional
from urllib.parse import urlsplit

import pytest
import requests

from app import create_app
from misv.config import MirrorConfig

ORIGIN = "example.com"


class FakeResponse:
    def __init__(self, url: str, status_code: int = 200, reason: str = "OK", body: bytes = b"",
                 redirected: bool = False, chunks: Optional[List[bytes]] = None, error: Optional[Exception] = None):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        self.history = [object()] if redirected else []
        self._chunks = chunks if chunks is not None else [body[i:i + 4] for i in range(0, len(body), 4)]
        self._error = error
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    def close(self):
        self.closed = True


class FakeOrigin:
    """Records every GET and answers from ``routes``; unknown paths get a 404."""

    def __init__(self) -> None:
        self.routes: Dict[str, dict] = {}
        self.calls: List[dict] = []
        self.responses: List[FakeResponse] = []

    def add(self, path: str, body: bytes = b"", status: int = 200, reason: str = "OK",
            final_path: Optional[str] = None, **kwargs) -> None:
        self.routes[path] = dict(body=body, status=status, reason=reason, final_path=final_path, **kwargs)

    def get(self, url, headers=None, stream=False, **kwargs):
        path = urlsplit(url).path
        self.calls.append({"url": url, "path": path, "headers": dict(headers or {}), "stream": stream})
        route = self.routes.get(path)
        if route is None:
            response = FakeResponse(url, status_code=404, reason="Not Found")
        elif "raises" in route:
            raise route["raises"]
        else:
            final_path = route["final_path"] or path
            response = FakeResponse(
                f"https://{ORIGIN}{final_path}",
                status_code=route["status"],
                reason=route["reason"],
                body=route["body"],
                redirected=final_path != path,
                chunks=route.get("chunks"),
                error=route.get("error"),
            )
        self.responses.append(response)
        return response

    @property
    def paths(self) -> List[str]:
        return [call["path"] for call in self.calls]


class ExplodingOrigin:
    """An origin that must never be contacted."""

    def get(self, url, **kwargs):
        raise AssertionError(f"unexpected origin request for {url}")


@pytest.fixture
def root(tmp_path):
    path = tmp_path / ORIGIN
    path.mkdir()
    return path


@pytest.fixture
def config(root, tmp_path):
    return MirrorConfig.create(bind="127.0.0.1:8080", origin=ORIGIN, root=str(root), log_dir=str(tmp_path / "logs"))


@pytest.fixture
def origin():
    return FakeOrigin()


@pytest.fixture
def client(config, origin):
    app = create_app(config, session=origin)
    app.testing = True
    return app.test_client()


@pytest.fixture
def offline_client(config):
    app = create_app(config, session=ExplodingOrigin())
    app.testing = True
    return app.test_client()


@pytest.fixture
def clean_misv_logger():
    logger = logging.getLogger("misv")
    before = list(logger.handlers)
    yield logger
    for handler in logger.handlers[:]:
        if handler not in before:
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def transport_error():
    return requests.ConnectionError("connection refused")
