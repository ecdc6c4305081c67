"""Snapshot extraction from fetched product pages.

A page is read through an ordered list of independent strategies. Each one
returns a partial result; the extractor folds them together field by field,
so the first strategy to resolve a field wins and later strategies only fill
the gaps. A strategy that trips over a malformed payload is skipped.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional
from urllib.parse import parse_qsl, urlparse

from bs4 import BeautifulSoup, Tag
from bs4.element import PreformattedString

from .errors import ParseError
from .models import (
    NOT_SELECTED,
    ColorKey,
    IdentityHints,
    Region,
    Snapshot,
    StockStatus,
    detect_region,
)

logger = logging.getLogger(__name__)

OUT_OF_STOCK_MARKER = "OutOfStock"
LOW_STOCK_ELEMENT_ID = "pdp-inventory-low-stock-warning"
LOW_STOCK_PHRASES = (
    "hurry, only a few left",
    "only a few left",
    "almost gone",
    "low stock",
    "只剩幾件",
    "僅剩少量",
)
SOLD_OUT_LABELS = ("sold out", "out of stock", "已售罄", "缺貨")
SOLD_OUT_PHRASES = (
    "sold out",
    "out of stock",
    "join waitlist",
    "已售罄",
    "缺貨",
)
HIDDEN_CLASSES = {"visually-hidden", "sr-only", "d-none", "hidden"}
NON_RENDERED_TAGS = {"script", "style", "template", "noscript"}
PRICE_PATTERN = re.compile(r"(?:HK|A|NZ|CA|NT)?\$\s*(\d+(?:[,.]\d+)*)")
DISPLAY_NONE = re.compile(r"display\s*:\s*none", re.IGNORECASE)
DISPLAY_BLOCK = re.compile(r"display\s*:\s*block", re.IGNORECASE)
VISIBILITY_HIDDEN = re.compile(r"visibility\s*:\s*hidden", re.IGNORECASE)


@dataclass
class PartialSnapshot:
    """Fields a single strategy managed to resolve; ``None`` means unknown."""

    current_price: Optional[float] = None
    original_price: Optional[float] = None
    on_sale: Optional[bool] = None
    stock_status: Optional[StockStatus] = None
    available_colors: Optional[FrozenSet[ColorKey]] = None


class Page:
    """Raw page content with lazily parsed views shared by all strategies."""

    def __init__(self, html: str, region: str = Region.US):
        self.html = html or ""
        self.region = region
        self._soup: Optional[BeautifulSoup] = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    @property
    def is_catalog_region(self) -> bool:
        return self.region == Region.US


def identity_from_url(url: str) -> Dict[str, Optional[str]]:
    """Read colour code and size from variant-selecting query parameters."""
    color_code: Optional[str] = None
    size: Optional[str] = None
    for key, value in parse_qsl(urlparse(url).query):
        if key == "color" and not color_code:
            color_code = value
        elif key == "sz" and not size:
            size = value
        elif key.startswith("dwvar_") and key.endswith("_color") and not color_code:
            color_code = value
        elif key.startswith("dwvar_") and key.endswith("_size") and not size:
            size = value
    return {"color_code": color_code, "size": size}


def hints_for(url: str, color_name: Optional[str] = None, size: Optional[str] = None) -> IdentityHints:
    params = identity_from_url(url)
    chosen_size = size if size and size != NOT_SELECTED else params["size"]
    return IdentityHints(
        color_code=params["color_code"],
        color_name=color_name,
        size=chosen_size or NOT_SELECTED,
    )


def load_catalog(page: Page) -> Optional[Dict[str, Any]]:
    """Return the product query embedded in ``__NEXT_DATA__``, if any."""
    script = page.soup.find("script", id="__NEXT_DATA__")
    if script is None:
        return None
    try:
        next_data = json.loads(script.string or script.get_text())
    except ValueError as exc:
        raise ParseError(f"Malformed __NEXT_DATA__ payload: {exc}") from exc
    if not isinstance(next_data, dict):
        raise ParseError("__NEXT_DATA__ is not an object")
    page_props = (next_data.get("props") or {}).get("pageProps") or {}
    queries = (page_props.get("dehydratedState") or {}).get("queries") or []
    for query in queries:
        data = ((query or {}).get("state") or {}).get("data")
        if isinstance(data, dict) and data.get("productSummary") and data.get("skus") is not None:
            return data
    return None


def load_product_group(page: Page) -> Optional[Dict[str, Any]]:
    """Return the first JSON-LD ``ProductGroup`` document, skipping bad blocks."""
    for script in page.soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            document = json.loads(script.string or script.get_text())
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        candidates = document if isinstance(document, list) else [document]
        for candidate in candidates:
            if isinstance(candidate, dict) and candidate.get("@type") == "ProductGroup":
                return candidate
    return None


def parse_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(str(value).replace(",", ""))
    except ValueError:
        return None
    return price if price > 0 else None


def catalog_colors(catalog: Dict[str, Any]) -> Optional[FrozenSet[ColorKey]]:
    colors = catalog.get("colors")
    if not isinstance(colors, list):
        return None
    return frozenset(
        ColorKey(code=str(color["code"]), name=str(color.get("name") or color["code"]))
        for color in colors
        if isinstance(color, dict) and color.get("code")
    )


def find_sku(catalog: Dict[str, Any], color_code: str, hints: IdentityHints) -> Optional[Dict[str, Any]]:
    for sku in catalog.get("skus") or []:
        if ((sku.get("color") or {}).get("code")) != color_code:
            continue
        if hints.any_size or sku.get("size") == hints.size:
            return sku
    return None


def sku_prices(sku: Dict[str, Any]) -> tuple:
    """Return ``(current, original, on_sale)`` for one SKU's price block."""
    price = sku.get("price") or {}
    list_price = parse_price(price.get("listPrice"))
    sale_price = parse_price(price.get("salePrice"))
    if sale_price is not None and list_price is not None and sale_price < list_price:
        return sale_price, list_price, True
    return list_price, None, False


def catalog_strategy(page: Page, hints: IdentityHints) -> Optional[PartialSnapshot]:
    """US catalog: one JSON document listing every colour x size SKU."""
    catalog = load_catalog(page)
    if catalog is None:
        return None

    result = PartialSnapshot(available_colors=catalog_colors(catalog))
    if (catalog.get("productSummary") or {}).get("isSoldOut"):
        result.stock_status = StockStatus.SOLD_OUT

    skus = catalog.get("skus") or []
    if hints.color_code and skus:
        sku = find_sku(catalog, hints.color_code, hints)
        if sku is not None:
            logger.debug(
                "Matched SKU for color=%s size=%s (available=%s)",
                hints.color_code,
                hints.size,
                sku.get("available"),
            )
            if sku.get("price"):
                current, original, on_sale = sku_prices(sku)
                result.current_price = current
                result.original_price = original
                result.on_sale = on_sale
            if not sku.get("available"):
                result.stock_status = StockStatus.SOLD_OUT
        elif not hints.any_size:
            for driver in catalog.get("colorDriver") or []:
                if driver.get("color") == hints.color_code:
                    if hints.size not in (driver.get("sizes") or []):
                        result.stock_status = StockStatus.SOLD_OUT
                    break

    if result.current_price is None and skus:
        result.current_price = parse_price((skus[0].get("price") or {}).get("listPrice"))
    return result


def _offer(variant: Dict[str, Any]) -> Dict[str, Any]:
    offers = variant.get("offers") or {}
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    return offers if isinstance(offers, dict) else {}


def _is_out_of_stock(variant: Dict[str, Any]) -> bool:
    return OUT_OF_STOCK_MARKER in str(_offer(variant).get("availability") or "")


def linked_data_strategy(page: Page, hints: IdentityHints) -> Optional[PartialSnapshot]:
    """Regional sites: a JSON-LD ProductGroup whose variants are keyed by colour name."""
    if page.is_catalog_region and page.soup.find("script", id="__NEXT_DATA__") is not None:
        return None
    group = load_product_group(page)
    if group is None:
        return None

    variants = [v for v in group.get("hasVariant") or [] if isinstance(v, dict)]
    colors = {
        ColorKey(code=str(v["color"]), name=str(v["color"]), by_name=True)
        for v in variants
        if v.get("color")
    }
    result = PartialSnapshot(available_colors=frozenset(colors))

    color_variants = [v for v in variants if hints.color_name and v.get("color") == hints.color_name]
    logger.debug("Linked-data match for color=%r: %d variants", hints.color_name, len(color_variants))
    if not color_variants:
        return result

    size_match = None
    if not hints.any_size:
        size_match = next((v for v in color_variants if v.get("size") == hints.size), None)
        if size_match is not None and _is_out_of_stock(size_match):
            result.stock_status = StockStatus.SOLD_OUT
    if size_match is not None:
        result.current_price = parse_price(_offer(size_match).get("price"))
    if result.current_price is None:
        result.current_price = parse_price(_offer(color_variants[0]).get("price"))
    if all(_is_out_of_stock(v) for v in color_variants):
        result.stock_status = StockStatus.SOLD_OUT
    return result


def is_hidden(element: Tag) -> bool:
    """True if the element itself is not rendered."""
    if element.name in NON_RENDERED_TAGS:
        return True
    if element.has_attr("hidden") or element.get("aria-hidden") == "true":
        return True
    style = element.get("style") or ""
    if DISPLAY_NONE.search(style) or VISIBILITY_HIDDEN.search(style):
        return True
    classes = set(element.get("class") or [])
    return bool(classes & HIDDEN_CLASSES)


def is_rendered(element: Tag) -> bool:
    node: Optional[Tag] = element
    while node is not None and getattr(node, "name", None) not in (None, "[document]"):
        if is_hidden(node):
            return False
        node = node.parent
    return True


def visible_text(soup: BeautifulSoup) -> str:
    """Concatenate only the text that would actually be rendered."""
    chunks: List[str] = []
    for string in soup.find_all(string=True):
        if isinstance(string, PreformattedString):
            continue
        parent = string.parent
        if parent is None or not is_rendered(parent):
            continue
        text = string.strip()
        if text:
            chunks.append(text)
    return "\n".join(chunks)


def _contains_any(text: str, phrases: Iterable[str]) -> bool:
    return any(phrase in text for phrase in phrases)


def visible_text_strategy(page: Page, hints: IdentityHints) -> Optional[PartialSnapshot]:
    """Stock hints from rendered badges and messages."""
    soup = page.soup
    if page.is_catalog_region:
        warning = soup.find(id=LOW_STOCK_ELEMENT_ID)
        lines = visible_text(soup).lower().splitlines()
        text = "\n".join(lines)
        if (warning is not None and is_rendered(warning)) or _contains_any(text, LOW_STOCK_PHRASES):
            return PartialSnapshot(stock_status=StockStatus.LOW_STOCK)
        if any(line.strip() in SOLD_OUT_LABELS for line in lines):
            return PartialSnapshot(stock_status=StockStatus.SOLD_OUT)
        return None

    for button in soup.select(".add-to-cart, .add-to-cart-global, button[data-action='addToCart']"):
        if button.has_attr("disabled") or "disabled" in (button.get("class") or []):
            return PartialSnapshot(stock_status=StockStatus.SOLD_OUT)
        if _contains_any(button.get_text(" ", strip=True).lower(), SOLD_OUT_PHRASES):
            return PartialSnapshot(stock_status=StockStatus.SOLD_OUT)
    for message in soup.select(".stock-avail-msg"):
        if DISPLAY_BLOCK.search(message.get("style") or ""):
            return PartialSnapshot(stock_status=StockStatus.LOW_STOCK)
    return None


def price_text_strategy(page: Page, hints: IdentityHints) -> Optional[PartialSnapshot]:
    """Last-resort price from the rendered price element."""
    element = page.soup.select_one('[data-lll-pl="price"]')
    if element is None:
        element = page.soup.find(class_=re.compile("price"))
    if element is None:
        return None
    match = PRICE_PATTERN.search(element.get_text(" ", strip=True))
    if not match:
        return None
    return PartialSnapshot(current_price=parse_price(match.group(1)))


Strategy = Callable[[Page, IdentityHints], Optional[PartialSnapshot]]

STRUCTURED_STRATEGIES: List[Strategy] = [catalog_strategy, linked_data_strategy]


def merge_partials(partials: Iterable[PartialSnapshot]) -> PartialSnapshot:
    """Fold partial results; the first to resolve a field wins.

    ``sold_out`` is sticky: once any layer reports it, no later layer can
    weaken the stock status.
    """
    merged = PartialSnapshot()
    for partial in partials:
        for entry in fields(PartialSnapshot):
            value = getattr(partial, entry.name)
            if value is None:
                continue
            if getattr(merged, entry.name) is None:
                setattr(merged, entry.name, value)
        if partial.stock_status == StockStatus.SOLD_OUT:
            merged.stock_status = StockStatus.SOLD_OUT
    return merged


def _run(strategy: Strategy, page: Page, hints: IdentityHints) -> Optional[PartialSnapshot]:
    try:
        return strategy(page, hints)
    except ParseError as exc:
        logger.debug("%s skipped: %s", strategy.__name__, exc)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.debug("%s failed on malformed payload: %s", strategy.__name__, exc)
    return None


def extract_snapshot(
    html: str,
    hints: IdentityHints,
    region: str = Region.US,
    structured_only: bool = False,
) -> Snapshot:
    """Build a best-effort Snapshot for one colour/size out of a page.

    Never raises for malformed content; with nothing usable the defaults
    (``in_stock``, no prices, no colours) come back.
    """
    return extract_from_page(Page(html, region=region), hints, structured_only=structured_only)


def extract_from_page(page: Page, hints: IdentityHints, structured_only: bool = False) -> Snapshot:
    partials: List[PartialSnapshot] = []
    for strategy in STRUCTURED_STRATEGIES:
        partial = _run(strategy, page, hints)
        if partial is not None:
            partials.append(partial)

    merged = merge_partials(partials)
    if not structured_only:
        # Rendered text is trusted only for fields no payload resolved.
        if merged.stock_status is None:
            partials.append(_run(visible_text_strategy, page, hints) or PartialSnapshot())
        if merged.current_price is None:
            partials.append(_run(price_text_strategy, page, hints) or PartialSnapshot())
        merged = merge_partials(partials)

    return Snapshot(
        current_price=merged.current_price,
        original_price=merged.original_price,
        on_sale=bool(merged.on_sale),
        stock_status=merged.stock_status or StockStatus.IN_STOCK,
        available_colors=merged.available_colors or frozenset(),
        colors_found=merged.available_colors is not None,
    )


def extract_product(html: str, url: str, color: Optional[str] = None, size: Optional[str] = None) -> Dict[str, Any]:
    """Build raw product data for a page, suitable for tracking it."""
    region = detect_region(url)
    page = Page(html, region=region)
    params = identity_from_url(url)
    catalog = _quiet(load_catalog, page) if page.is_catalog_region else None
    group = None if catalog else _quiet(load_product_group, page)

    heading = page.soup.find("h1")
    title = heading.get_text(" ", strip=True) if heading else None
    name = title or "Unknown Product"
    product_line = name
    product_id = None
    if catalog:
        summary = catalog.get("productSummary") or {}
        name = summary.get("displayName") or name
        product_line = name
        product_id = summary.get("productId")
        if not color and params["color_code"]:
            for entry in catalog.get("colors") or []:
                if isinstance(entry, dict) and entry.get("code") == params["color_code"]:
                    color = entry.get("name")
                    break
    elif group:
        name = group.get("name") or name
        product_line = name
        product_id = group.get("productGroupID")
        if not color:
            first = next(iter(group.get("hasVariant") or []), {})
            color = first.get("color") if isinstance(first, dict) else None
    if not product_id:
        match = re.search(r"prod\d+", urlparse(url).path)
        product_id = match.group(0) if match else None

    image_meta = page.soup.find("meta", attrs={"property": "og:image"})
    chosen_size = size or params["size"] or NOT_SELECTED
    snapshot = extract_snapshot(html, hints_for(url, color, chosen_size), region=region)
    return {
        "name": name,
        "productLine": product_line,
        "productId": product_id,
        "color": color or "Unknown Color",
        "size": chosen_size,
        "url": url,
        "region": region,
        "image": image_meta.get("content") if image_meta else None,
        "currentPrice": snapshot.current_price,
        "originalPrice": snapshot.original_price,
        "onSale": snapshot.on_sale,
        "stockStatus": snapshot.stock_status.value,
        "availableColors": [c.to_dict() for c in snapshot.available_colors],
    }


def _quiet(loader: Callable[[Page], Optional[Dict[str, Any]]], page: Page) -> Optional[Dict[str, Any]]:
    try:
        return loader(page)
    except (ParseError, AttributeError, KeyError, TypeError, ValueError):
        return None
