"""Core execution workflow for variantwatch."""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from .db import NOTIFICATION_MAP_KEY, TRACKED_PRODUCTS_KEY
from .diff import diff_item
from .errors import FetchError, IdentityConflict, IndexOutOfRange
from .extractor import extract_product, extract_snapshot, hints_for
from .fetcher import Fetcher, PageFetcher, page_key
from .markdown import MarkdownTransition, resolve_markdown, should_check_markdown
from .models import (
    Badge,
    ChangeEvent,
    CycleSummary,
    NotificationRecord,
    Snapshot,
    StockStatus,
    TrackedItem,
    TrackResult,
)
from .notifications import EventNotifier, build_notifier_from_env

logger = logging.getLogger(__name__)

MAX_NOTIFICATION_ENTRIES = 200
ATTENTION_STATUSES = {StockStatus.LOW_STOCK, StockStatus.SOLD_OUT}


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def set_many(self, values: Dict[str, Any]) -> None:
        ...


class CycleContext:
    """State scoped to one check cycle: the page cache and new-colour claims.

    Safe to share between worker threads. The first fetch of a page wins and
    its result (or failure) is reused by every sibling variant.
    """

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher
        self.pages: Dict[str, str] = {}
        self.failures: Dict[str, FetchError] = {}
        self.new_color_products: Set[str] = set()
        self._lock = threading.Lock()
        self._page_locks: Dict[str, threading.Lock] = {}

    def fetch(self, url: str) -> str:
        key = page_key(url)
        with self._lock:
            page_lock = self._page_locks.setdefault(key, threading.Lock())
        with page_lock:
            if key in self.pages:
                logger.debug("Reusing cached page for %s", key)
                return self.pages[key]
            if key in self.failures:
                raise self.failures[key]
            try:
                html = self.fetcher.fetch(url)
            except FetchError as exc:
                self.failures[key] = exc
                raise
            self.pages[key] = html
            return html

    def claim_new_colors(self, product_id: str) -> bool:
        """True for the first variant of a product to announce new colours."""
        with self._lock:
            if product_id in self.new_color_products:
                return False
            self.new_color_products.add(product_id)
            return True


@dataclass
class ItemOutcome:
    item: TrackedItem
    events: List[ChangeEvent] = field(default_factory=list)
    notifications: List[NotificationRecord] = field(default_factory=list)
    failed: bool = False


def now_ms() -> int:
    return int(time.time() * 1000)


def attention_count(items: List[TrackedItem]) -> int:
    """Number of items in a state worth the user's attention."""
    return sum(1 for item in items if item.stock_status in ATTENTION_STATUSES or item.on_sale)


def merge_snapshot(
    item: TrackedItem,
    snapshot: Snapshot,
    events: List[ChangeEvent],
    transition: Optional[MarkdownTransition],
    checked_at: int,
) -> TrackedItem:
    """Fold a snapshot into the stored item; unknown fields keep prior values."""
    price_known = snapshot.current_price is not None
    updated = replace(
        item,
        current_price=snapshot.current_price if price_known else item.current_price,
        original_price=snapshot.original_price if price_known else item.original_price,
        on_sale=snapshot.on_sale,
        stock_status=snapshot.stock_status,
        available_colors=snapshot.available_colors or item.available_colors,
        last_checked=checked_at,
    )
    if transition is not None:
        clearance = transition.snapshot
        updated.stock_status = StockStatus.IN_STOCK
        updated.markdown_url = transition.destination_url
        # later cycles read the clearance page, so it becomes the baseline
        if clearance.current_price is not None:
            updated.current_price = clearance.current_price
            updated.original_price = clearance.original_price
            updated.on_sale = clearance.on_sale
        if clearance.available_colors:
            updated.available_colors = clearance.available_colors
    if events:
        updated.last_change = {"type": events[0].type, "timestamp": checked_at}
    return updated


@dataclass
class VariantWatchRunner:
    """Coordinates fetch, extraction, diff, notification and persistence."""

    store: KeyValueStore
    fetcher: Fetcher = field(default_factory=PageFetcher)
    notifier: EventNotifier = field(
        default_factory=lambda: EventNotifier(channel=build_notifier_from_env())
    )
    max_workers: int = 1
    on_badge: Optional[Callable[[Badge], None]] = None
    clock: Callable[[], int] = now_ms
    _cycle_lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def init(self) -> None:
        """Initialize required persistence structures."""
        initialize = getattr(self.store, "initialize", None)
        if initialize is not None:
            logger.info("Initializing storage at %s", getattr(self.store, "path", "<memory>"))
            initialize()

    def list_items(self) -> List[TrackedItem]:
        raw = self.store.get(TRACKED_PRODUCTS_KEY, []) or []
        items = []
        for entry in raw:
            if not isinstance(entry, dict):
                logger.warning("Dropping unreadable tracked entry: %r", entry)
                continue
            items.append(TrackedItem.from_dict(entry))
        return items

    def _save_items(self, items: List[TrackedItem], extra: Optional[Dict[str, Any]] = None) -> None:
        values: Dict[str, Any] = {TRACKED_PRODUCTS_KEY: [item.to_dict() for item in items]}
        values.update(extra or {})
        self.store.set_many(values)
        self.publish_badge(items)

    def publish_badge(self, items: Optional[List[TrackedItem]] = None) -> int:
        if items is None:
            items = self.list_items()
        count = attention_count(items)
        if self.on_badge is not None:
            stock_alert = any(item.stock_status in ATTENTION_STATUSES for item in items)
            self.on_badge(Badge(count=count, stock_alert=stock_alert))
        return count

    def check_all(self) -> CycleSummary:
        """Run one full pass over all tracked items."""
        with self._cycle_lock:
            executed_at = dt.datetime.now(dt.timezone.utc).isoformat()
            items = self.list_items()
            summary = CycleSummary(executed_at=executed_at)
            if not items:
                logger.info("No tracked items; skipping check cycle")
                summary.attention_count = self.publish_badge(items)
                return summary

            logger.info("Starting check cycle for %d tracked items", len(items))
            context = CycleContext(self.fetcher)
            if self.max_workers > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    outcomes = list(pool.map(lambda item: self.check_item(item, context), items))
            else:
                outcomes = [self.check_item(item, context) for item in items]

            updated_items = [outcome.item for outcome in outcomes]
            for outcome in outcomes:
                summary.checked += 1
                if outcome.failed:
                    summary.failed += 1
                if outcome.events:
                    summary.events[_item_key(outcome.item)] = outcome.events
                summary.notifications.extend(outcome.notifications)

            notification_map = self.store.get(NOTIFICATION_MAP_KEY, {}) or {}
            for record in summary.notifications:
                notification_map[record.id] = record.url
            self._save_items(
                updated_items,
                extra={NOTIFICATION_MAP_KEY: _bounded(notification_map)},
            )
            summary.attention_count = attention_count(updated_items)

            logger.info(
                "Cycle finished: %d checked, %d failed, %d events, %d notifications",
                summary.checked,
                summary.failed,
                summary.event_count,
                len(summary.notifications),
            )
            self._record_run(summary)
            return summary

    def check_item(self, item: TrackedItem, context: CycleContext) -> ItemOutcome:
        """Check one item; any failure keeps its previous state."""
        source_url = item.markdown_url or item.url
        try:
            html = context.fetch(source_url)
            snapshot = extract_snapshot(
                html,
                hints_for(source_url, item.color, item.size),
                region=item.region,
            )
            changes = diff_item(item, snapshot)

            if item.product_id and any(c.type == ChangeEvent.NEW_COLOR for c in changes):
                if not context.claim_new_colors(item.product_id):
                    logger.debug("New colors for %s already announced this cycle", item.product_id)
                    changes = [c for c in changes if c.type != ChangeEvent.NEW_COLOR]

            transition = None
            if not item.markdown_url and should_check_markdown(item, snapshot, changes):
                transition = self._resolve_markdown(item, context)

            notifications: List[NotificationRecord] = []
            events = list(changes)
            if transition is not None:
                changes = [c for c in changes if not c.is_sold_out_transition()]
                events = [transition.event] + changes
                record = self.notifier.notify(item, transition.event, url=transition.destination_url)
                if record is not None:
                    notifications.append(record)
            for change in changes:
                record = self.notifier.notify(item, change, url=source_url)
                if record is not None:
                    notifications.append(record)

            updated = merge_snapshot(item, snapshot, events, transition, self.clock())
            return ItemOutcome(item=updated, events=events, notifications=notifications)
        except FetchError as exc:
            logger.warning("Skipping %s this cycle: %s", item.label, exc)
        except Exception:  # noqa: BLE001
            logger.exception("Error checking %s", item.label)
        return ItemOutcome(item=item, failed=True)

    def _resolve_markdown(self, item: TrackedItem, context: CycleContext) -> Optional[MarkdownTransition]:
        try:
            return resolve_markdown(item, context)
        except Exception:  # noqa: BLE001
            logger.exception("Markdown check failed for %s", item.label)
            return None

    def _record_run(self, summary: CycleSummary) -> None:
        add_run = getattr(self.store, "add_run", None)
        if add_run is None:
            return
        try:
            add_run(executed_at=summary.executed_at, status=summary.status, notes=_format_note(summary))
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record run history")

    def track_item(self, raw_product: Dict[str, Any]) -> TrackResult:
        """Start tracking a variant, seeding its baseline from a live fetch."""
        with self._cycle_lock:
            items = self.list_items()
            try:
                candidate = TrackedItem.from_dict(
                    dict(raw_product, trackNewColors=True, lastChange=None, addedAt=self.clock())
                )
            except (TypeError, ValueError) as exc:
                logger.warning("Rejected product data: %s", exc)
                return TrackResult(success=False, reason=f"Invalid product data: {exc}")
            try:
                _ensure_untracked(items, candidate)
            except IdentityConflict as exc:
                return TrackResult(success=False, reason=str(exc))

            try:
                html = self.fetcher.fetch(candidate.url)
                snapshot = extract_snapshot(
                    html,
                    hints_for(candidate.url, candidate.color, candidate.size),
                    region=candidate.region,
                )
                candidate = merge_snapshot(candidate, snapshot, [], None, self.clock())
                logger.info("Baseline fetch: %d colors stored", len(snapshot.available_colors))
            except FetchError as exc:
                logger.warning("Baseline fetch failed, using supplied data: %s", exc)

            items.append(candidate)
            self._save_items(items)
            logger.info("Now tracking %s (size %s)", candidate.label, candidate.size)
            return TrackResult(success=True)

    def track_url(self, url: str, color: Optional[str] = None, size: Optional[str] = None) -> TrackResult:
        """Track a variant given only its page URL."""
        try:
            html = self.fetcher.fetch(url)
        except FetchError as exc:
            return TrackResult(success=False, reason=str(exc))
        return self.track_item(extract_product(html, url, color=color, size=size))

    def untrack_item(self, index: int) -> TrackResult:
        with self._cycle_lock:
            items = self.list_items()
            try:
                _ensure_index(items, index)
            except IndexOutOfRange as exc:
                return TrackResult(success=False, reason=str(exc))
            removed = items.pop(index)
            self._save_items(items)
            logger.info("Stopped tracking %s", removed.label)
            return TrackResult(success=True)

    def set_track_new_colors(self, index: int, enabled: bool) -> TrackResult:
        with self._cycle_lock:
            items = self.list_items()
            try:
                _ensure_index(items, index)
            except IndexOutOfRange as exc:
                return TrackResult(success=False, reason=str(exc))
            items[index].track_new_colors = enabled
            self._save_items(items)
            return TrackResult(success=True)

    def clear_change_markers(self) -> None:
        with self._cycle_lock:
            items = self.list_items()
            for item in items:
                item.last_change = None
            self._save_items(items)

    def open_notification(self, notification_id: str) -> Optional[str]:
        """Resolve a clicked notification to its URL and forget it."""
        with self._cycle_lock:
            notification_map = self.store.get(NOTIFICATION_MAP_KEY, {}) or {}
            url = notification_map.pop(notification_id, None)
            if url is not None:
                self.store.set(NOTIFICATION_MAP_KEY, notification_map)
            return url


def _ensure_untracked(items: List[TrackedItem], candidate: TrackedItem) -> None:
    if any(item.identity == candidate.identity for item in items):
        raise IdentityConflict("Already tracking this product.")


def _ensure_index(items: List[TrackedItem], index: int) -> None:
    if not 0 <= index < len(items):
        raise IndexOutOfRange(f"No tracked item at index {index}")


def _bounded(notification_map: Dict[str, str]) -> Dict[str, str]:
    """Keep only the newest entries of the click-through table."""
    overflow = len(notification_map) - MAX_NOTIFICATION_ENTRIES
    if overflow <= 0:
        return notification_map
    return dict(list(notification_map.items())[overflow:])


def _item_key(item: TrackedItem) -> str:
    return f"{item.product_id}:{item.color}:{item.size}"


def _format_note(summary: CycleSummary) -> str:
    """Render a concise run note summarizing the cycle outcome."""
    return (
        f"items(checked={summary.checked} / failed={summary.failed}) "
        f"events={summary.event_count} notifications={len(summary.notifications)} "
        f"attention={summary.attention_count}"
    )
