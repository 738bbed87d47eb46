"""
Origin fetching.

Builds the upstream request with a fixed browser-like header profile, lets the
session follow redirects, and classifies the final response.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional
from urllib.parse import quote, unquote, urlsplit

import requests

from misv.errors import InvalidPath, OriginError, OriginUnreachable
from misv.paths import normalize, with_index

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192
PATH_SAFE = "/:@!$&'()*+,;=~"

BASE_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
}


def build_headers(user_agent: str, xff: Optional[str] = None) -> Dict[str, str]:
    """
    Header profile sent with every origin request.

    Args:
        user_agent: User-Agent value
        xff: X-Forwarded-For value; the header is omitted when ``None``

    Returns:
        Dict of request headers
    """
    headers = dict(BASE_HEADERS)
    headers['User-Agent'] = user_agent
    if xff:
        headers['X-Forwarded-For'] = xff
    return headers


@dataclass
class FetchOutcome:
    """
    A successful origin response, alive for one fetch-and-populate cycle.

    Attributes:
        canonical_path: Decoded path of the final URL after redirects
        response: The streamed ``requests`` response
    """
    canonical_path: str
    response: requests.Response

    @property
    def target_path(self) -> str:
        """Path the body is cached under: the canonical path, with ``index.html`` for directories."""
        return with_index(self.canonical_path)

    def iter_body(self) -> Iterator[bytes]:
        return self.response.iter_content(chunk_size=CHUNK_SIZE)

    def close(self) -> None:
        self.response.close()

    def __enter__(self) -> "FetchOutcome":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class OriginFetcher:
    """
    Fetches missing files from the origin server over HTTPS.

    Attributes:
        origin (str): Hostname of the origin server
        session: Shared ``requests.Session`` (its adapter decides how TCP connections are dialed)
        headers (Dict): Header profile for every request
    """

    def __init__(self, origin: str, session: requests.Session, user_agent: str, xff: Optional[str] = None):
        self.origin = origin
        self.session = session
        self.headers = build_headers(user_agent, xff)

    def origin_url(self, url_path: str) -> str:
        return f"https://{self.origin}{quote(url_path, safe=PATH_SAFE)}"

    def fetch(self, url_path: str) -> FetchOutcome:
        """
        GET ``url_path`` from the origin, following redirects.

        The caller owns the returned outcome and must close it.

        Args:
            url_path: Normalized request path

        Returns:
            FetchOutcome for a 2xx final response

        Raises:
            OriginUnreachable: The request could not be built or the transport failed
            OriginError: The final status is not 2xx, or the final URL has an invalid path
        """
        url = self.origin_url(url_path)
        logger.info(f"{url_path} not found, fetching from origin URL {url}")
        try:
            response = self.session.get(url, headers=self.headers, stream=True)
        except requests.RequestException as e:
            raise OriginUnreachable("Failed to fetch file", path=url_path, cause=e) from e

        if not 200 <= response.status_code < 300:
            status_line = f"{response.status_code} {response.reason or ''}".strip()
            response.close()
            raise OriginError(f"Origin server response: {status_line}", path=url_path)

        try:
            canonical_path = self.canonical_path(response.url)
        except InvalidPath as e:
            response.close()
            raise OriginError(f"Origin resolved to an invalid path {e.path!r}", path=url_path) from e

        if response.history:
            logger.info(f"Origin redirected {url_path} to {canonical_path}")
        return FetchOutcome(canonical_path, response)

    @staticmethod
    def canonical_path(final_url: str) -> str:
        """Decoded, normalized path of the final response URL; query and fragment are dropped."""
        path = unquote(urlsplit(final_url).path) or '/'
        return normalize(path)
