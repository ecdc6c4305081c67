"""HTTP access to storefront product pages."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

import requests

from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class Fetcher(Protocol):
    """Anything that turns a URL into page HTML or raises FetchError."""

    def fetch(self, url: str) -> str:
        ...


class PageFetcher:
    """Thin wrapper around a requests session for product pages."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml",
        })

    def fetch(self, url: str) -> str:
        logger.debug("Fetching %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(url, reason=str(exc)) from exc
        if response.status_code >= 400:
            raise FetchError(url, status=response.status_code)

        if not response.encoding or response.encoding.lower() == "iso-8859-1":
            response.encoding = response.apparent_encoding or "utf-8"
        return response.text


def page_key(url: str) -> str:
    """The underlying page of a variant URL: query and fragment stripped."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
