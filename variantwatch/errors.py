"""Error taxonomy for variantwatch."""

from __future__ import annotations


class VariantWatchError(Exception):
    """Base class for engine errors."""


class FetchError(VariantWatchError):
    """Network or HTTP failure while fetching a page."""

    def __init__(self, url: str, status: int | None = None, reason: str = ""):
        self.url = url
        self.status = status
        detail = f"HTTP {status}" if status is not None else (reason or "network error")
        super().__init__(f"Failed to fetch {url}: {detail}")


class ParseError(VariantWatchError):
    """A structured payload was present but malformed."""


class IdentityConflict(VariantWatchError):
    """The colour and size of this product are already tracked."""


class IndexOutOfRange(VariantWatchError):
    """An item index no longer refers to a tracked item."""
