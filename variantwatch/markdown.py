"""Detection of colours that moved from a regular page to its markdown page.

The US storefront lists a product twice: the regular page and a clearance
("We Made Too Much") sibling whose path carries an ``-MD`` suffix before the
``/_/`` separator. When a colour is marked down it vanishes from the regular
page and shows up on the sibling under a different product id.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlencode

from .errors import FetchError, ParseError
from .extractor import Page, extract_from_page, identity_from_url, load_catalog
from .fetcher import Fetcher
from .models import ChangeEvent, IdentityHints, Region, Snapshot, TrackedItem

logger = logging.getLogger(__name__)

US_STORE_BASE = "https://shop.lululemon.com"
MARKDOWN_SUFFIX = "-MD"
PATH_SEPARATOR = re.compile(r"/_/")


@dataclass(frozen=True)
class MarkdownTransition:
    destination_url: str
    event: ChangeEvent
    snapshot: Snapshot


def markdown_url_for(url: str) -> Optional[str]:
    """Insert the clearance suffix before the first ``/_/`` of the path."""
    if not PATH_SEPARATOR.search(url):
        return None
    return PATH_SEPARATOR.sub(f"{MARKDOWN_SUFFIX}/_/", url, count=1)


def is_regular_catalog_url(url: str) -> bool:
    return f"{MARKDOWN_SUFFIX}/" not in url and ".html" not in url


def should_check_markdown(item: TrackedItem, fresh: Snapshot, changes: Iterable[ChangeEvent]) -> bool:
    """Whether the tracked colour may have moved to the markdown page."""
    if not is_regular_catalog_url(item.url):
        return False
    color_code = identity_from_url(item.url)["color_code"]
    if not color_code or not fresh.colors_found:
        return False
    if any(color.code == color_code for color in fresh.available_colors):
        return False
    sold_out = any(change.is_sold_out_transition() for change in changes)
    return sold_out or item.track_new_colors


def resolve_markdown(item: TrackedItem, fetcher: Fetcher) -> Optional[MarkdownTransition]:
    """Look for the tracked colour on the markdown sibling page.

    Any failure along the way means no transition was found.
    """
    color_code = identity_from_url(item.url)["color_code"]
    md_url = markdown_url_for(item.url)
    if not color_code or not md_url:
        return None

    logger.info("Color %s vanished from %s; checking markdown page", color_code, item.name)
    try:
        html = fetcher.fetch(md_url)
        page = Page(html, region=Region.US)
        catalog = load_catalog(page)
    except (FetchError, ParseError) as exc:
        logger.info("Markdown page unavailable for %s: %s", item.name, exc)
        return None
    if catalog is None:
        return None

    if not any(
        isinstance(entry, dict) and str(entry.get("code")) == color_code
        for entry in catalog.get("colors") or []
    ):
        logger.debug("Color %s not present on markdown page %s", color_code, md_url)
        return None

    hints = IdentityHints(color_code=color_code, color_name=item.color, size=item.size)
    snapshot = extract_from_page(page, hints, structured_only=True)
    if snapshot.on_sale:
        sale_price, list_price = snapshot.current_price, snapshot.original_price
    else:
        sale_price, list_price = None, snapshot.current_price or item.current_price

    summary = catalog.get("productSummary") or {}
    query = {"color": color_code}
    if not hints.any_size:
        query["sz"] = item.size
    destination = "{base}/p/{category}/{slug}/_/{product_id}?{query}".format(
        base=US_STORE_BASE,
        category=summary.get("parentCategoryUnifiedId") or "",
        slug=summary.get("unifiedId") or "",
        product_id=summary.get("productId") or "",
        query=urlencode(query),
    )
    logger.info(
        "Found %s on markdown page: %s (was %s) -> %s",
        item.label,
        sale_price if sale_price is not None else "?",
        list_price if list_price is not None else "?",
        destination,
    )
    return MarkdownTransition(
        destination_url=destination,
        event=ChangeEvent.moved_to_markdown(sale_price, list_price),
        snapshot=snapshot,
    )
