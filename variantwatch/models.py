"""Core data models for variantwatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from urllib.parse import urlparse

NOT_SELECTED = "Not selected"


class StockStatus(str, Enum):
    """The only three stock tiers a tracked item can be in."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    SOLD_OUT = "sold_out"

    @classmethod
    def normalize(cls, value: Any) -> "StockStatus":
        """Map loose stock wording onto a tier; anything unrecognised is in stock."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("-", " ").replace("_", " ")
        if "sold out" in text or "out of stock" in text or "unavailable" in text:
            return cls.SOLD_OUT
        if "low" in text or "few left" in text or "almost gone" in text:
            return cls.LOW_STOCK
        return cls.IN_STOCK


class Region:
    US = "US"
    HK = "HK"
    AU = "AU"
    INTL = "INTL"


def detect_region(url: str) -> str:
    """Derive the storefront region from a product URL."""
    host = (urlparse(url).hostname or "").lower()
    if host.endswith(".com.hk"):
        return Region.HK
    if host.endswith(".com.au"):
        return Region.AU
    if host.startswith("shop.") and ".html" not in url:
        return Region.US
    return Region.INTL


def uses_color_names(region: str) -> bool:
    """Linked-data storefronts key variants by colour name, not code."""
    return region != Region.US


@dataclass(frozen=True)
class ColorKey:
    """A colour entry whose identity rule depends on the storefront."""

    code: str
    name: str
    by_name: bool = False

    @property
    def identity(self) -> str:
        return self.name if self.by_name else self.code

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColorKey):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "name": self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], by_name: bool = False) -> "ColorKey":
        code = str(data.get("code") or data.get("name") or "")
        name = str(data.get("name") or code)
        return cls(code=code, name=name, by_name=by_name)


def color_set(colors: Iterable[ColorKey]) -> FrozenSet[ColorKey]:
    return frozenset(colors)


@dataclass
class Snapshot:
    """Freshly extracted, not-yet-merged product state."""

    current_price: Optional[float] = None
    original_price: Optional[float] = None
    on_sale: bool = False
    stock_status: StockStatus = StockStatus.IN_STOCK
    available_colors: FrozenSet[ColorKey] = field(default_factory=frozenset)
    colors_found: bool = False

    def has_color(self, key: ColorKey) -> bool:
        return key in self.available_colors


@dataclass(frozen=True)
class IdentityHints:
    """Selects one variant out of a multi-variant page."""

    color_code: Optional[str] = None
    color_name: Optional[str] = None
    size: Optional[str] = None

    @property
    def any_size(self) -> bool:
        return not self.size or self.size == NOT_SELECTED


@dataclass(frozen=True)
class ChangeEvent:
    """A typed fact about a difference between stored and fresh state."""

    type: str
    from_value: Any = None
    to_value: Any = None
    color: Optional[str] = None
    sale_price: Optional[float] = None
    list_price: Optional[float] = None

    STATUS_CHANGE = "status_change"
    PRICE_CHANGE = "price_change"
    WENT_ON_SALE = "went_on_sale"
    NEW_COLOR = "new_color"
    MOVED_TO_MARKDOWN = "moved_to_markdown"

    @classmethod
    def status_change(cls, from_status: StockStatus, to_status: StockStatus) -> "ChangeEvent":
        return cls(cls.STATUS_CHANGE, from_value=from_status, to_value=to_status)

    @classmethod
    def price_change(cls, from_price: float, to_price: float) -> "ChangeEvent":
        return cls(cls.PRICE_CHANGE, from_value=from_price, to_value=to_price)

    @classmethod
    def went_on_sale(cls) -> "ChangeEvent":
        return cls(cls.WENT_ON_SALE)

    @classmethod
    def new_color(cls, color: str) -> "ChangeEvent":
        return cls(cls.NEW_COLOR, color=color)

    @classmethod
    def moved_to_markdown(
        cls, sale_price: Optional[float], list_price: Optional[float]
    ) -> "ChangeEvent":
        return cls(cls.MOVED_TO_MARKDOWN, sale_price=sale_price, list_price=list_price)

    def is_sold_out_transition(self) -> bool:
        return self.type == self.STATUS_CHANGE and self.to_value == StockStatus.SOLD_OUT


@dataclass
class TrackedItem:
    """One monitored (product, color, size) triple."""

    product_id: str
    color: str
    size: str
    name: str
    product_line: str
    url: str
    region: str = Region.US
    image: Optional[str] = None
    current_price: Optional[float] = None
    original_price: Optional[float] = None
    on_sale: bool = False
    stock_status: StockStatus = StockStatus.IN_STOCK
    available_colors: FrozenSet[ColorKey] = field(default_factory=frozenset)
    markdown_url: Optional[str] = None
    track_new_colors: bool = True
    added_at: Optional[int] = None
    last_checked: Optional[int] = None
    last_change: Optional[Dict[str, Any]] = None

    @property
    def identity(self) -> tuple:
        return (self.product_id, self.color, self.size)

    @property
    def label(self) -> str:
        return f"{self.name} — {self.color}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "color": self.color,
            "size": self.size,
            "name": self.name,
            "productLine": self.product_line,
            "url": self.url,
            "region": self.region,
            "image": self.image,
            "currentPrice": self.current_price,
            "originalPrice": self.original_price,
            "onSale": self.on_sale,
            "stockStatus": self.stock_status.value,
            "availableColors": sorted(
                (color.to_dict() for color in self.available_colors),
                key=lambda entry: (entry["name"], entry["code"]),
            ),
            "markdownUrl": self.markdown_url,
            "trackNewColors": self.track_new_colors,
            "addedAt": self.added_at,
            "lastChecked": self.last_checked,
            "lastChange": self.last_change,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedItem":
        url = data.get("url") or ""
        region = data.get("region") or detect_region(url)
        by_name = uses_color_names(region)
        colors = frozenset(
            ColorKey.from_dict(entry, by_name=by_name)
            for entry in data.get("availableColors") or []
            if isinstance(entry, dict)
        )
        name = data.get("name") or "Unknown Product"
        return cls(
            product_id=str(data.get("productId") or ""),
            color=data.get("color") or "Unknown Color",
            size=data.get("size") or NOT_SELECTED,
            name=name,
            product_line=data.get("productLine") or name,
            url=url,
            region=region,
            image=data.get("image"),
            current_price=_optional_float(data.get("currentPrice")),
            original_price=_optional_float(data.get("originalPrice")),
            on_sale=bool(data.get("onSale")),
            stock_status=StockStatus.normalize(data.get("stockStatus")),
            available_colors=colors,
            markdown_url=data.get("markdownUrl"),
            track_new_colors=bool(data.get("trackNewColors", True)),
            added_at=data.get("addedAt"),
            last_checked=data.get("lastChecked"),
            last_change=data.get("lastChange"),
        )


@dataclass(frozen=True)
class NotificationRecord:
    """Maps a delivered notification to the page it should open."""

    id: str
    url: str


@dataclass(frozen=True)
class Badge:
    """Attention count plus whether stock problems (rather than sales) drive it."""

    count: int
    stock_alert: bool = False


@dataclass
class TrackResult:
    success: bool
    reason: Optional[str] = None


@dataclass
class CycleSummary:
    """Aggregated result returned by a check cycle."""

    executed_at: str
    checked: int = 0
    failed: int = 0
    events: Dict[str, List[ChangeEvent]] = field(default_factory=dict)
    notifications: List[NotificationRecord] = field(default_factory=list)
    attention_count: int = 0

    @property
    def status(self) -> str:
        return "partial_failure" if self.failed else "success"

    @property
    def event_count(self) -> int:
        return sum(len(events) for events in self.events.values())


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
