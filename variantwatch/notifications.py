"""Notification helpers for delivering change events to the user."""

from __future__ import annotations

import logging
import os
import random
import string
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

import requests

from .models import NOT_SELECTED, ChangeEvent, NotificationRecord, StockStatus, TrackedItem

logger = logging.getLogger(__name__)

NOTIFICATION_PREFIX = "lulu"

STATUS_TITLES = {
    StockStatus.LOW_STOCK: "⚠️ Almost Sold Out!",
    StockStatus.SOLD_OUT: "❌ Sold Out",
    StockStatus.IN_STOCK: "🎉 Back in Stock!",
}
STATUS_LABELS = {
    StockStatus.IN_STOCK: "In Stock",
    StockStatus.LOW_STOCK: "Low Stock",
    StockStatus.SOLD_OUT: "Sold Out",
}


@dataclass(frozen=True)
class Notification:
    id: str
    title: str
    message: str


class NotificationChannel(Protocol):
    """Protocol defining the delivery contract."""

    def send(self, notification: Notification) -> None:
        ...


@dataclass
class DesktopLogNotifier:
    """Surface notifications in the process log."""

    level: int = logging.WARNING

    def send(self, notification: Notification) -> None:
        logger.log(self.level, "%s | %s", notification.title, notification.message.replace("\n", " | "))


@dataclass
class SlackNotifier:
    """Send notifications to Slack via Incoming Webhook."""

    webhook_url: str
    timeout: int = 10

    def send(self, notification: Notification) -> None:
        payload = {"text": f"*{notification.title}*\n{notification.message}"}
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()


@dataclass
class CompositeNotifier:
    """Fan-out channel that forwards notifications to multiple channels."""

    notifiers: List[NotificationChannel]

    def send(self, notification: Notification) -> None:
        for notifier in self.notifiers:
            try:
                notifier.send(notification)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to deliver notification via %s", type(notifier).__name__)


def build_notifier_from_env() -> CompositeNotifier:
    """Construct the delivery channels from environment configuration."""
    notifiers: List[NotificationChannel] = [DesktopLogNotifier()]

    slack_webhook = (os.getenv("SLACK_WEBHOOK") or "").strip()
    if slack_webhook:
        notifiers.append(SlackNotifier(webhook_url=slack_webhook))

    return CompositeNotifier(notifiers=notifiers)


def new_notification_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{NOTIFICATION_PREFIX}-{int(time.time() * 1000)}-{suffix}"


def format_money(value: Optional[float]) -> str:
    if value is None:
        return "?"
    if float(value).is_integer():
        return f"${int(value)}"
    return f"${value:.2f}"


def format_status_message(event: ChangeEvent, size: str) -> str:
    size_label = f" (Size: {size})" if size and size != NOT_SELECTED else ""
    from_label = STATUS_LABELS.get(event.from_value, str(event.from_value))
    to_label = STATUS_LABELS.get(event.to_value, str(event.to_value))
    return f"Status: {from_label} → {to_label}{size_label}"


def format_event(item: TrackedItem, event: ChangeEvent) -> Optional[Tuple[str, str]]:
    """Render a change event into a ``(title, message)`` pair."""
    if event.type == ChangeEvent.STATUS_CHANGE:
        title = STATUS_TITLES.get(event.to_value, "🔔 Status Changed")
        return title, f"{item.label}\n{format_status_message(event, item.size)}"
    if event.type == ChangeEvent.PRICE_CHANGE:
        title = "📉 Price Drop!" if event.to_value < event.from_value else "📈 Price Increased"
        return title, f"{item.label}\n{format_money(event.from_value)} → {format_money(event.to_value)}"
    if event.type == ChangeEvent.WENT_ON_SALE:
        return "🏷️ Now On Sale!", item.label
    if event.type == ChangeEvent.NEW_COLOR:
        return "🎨 New Color Available!", f"{item.product_line}\nNew color: {event.color}"
    if event.type == ChangeEvent.MOVED_TO_MARKDOWN:
        return (
            "🏷️ Moved to We Made Too Much!",
            f"{item.label}\nNow {format_money(event.sale_price)} (was {format_money(event.list_price)})",
        )
    return None


@dataclass
class EventNotifier:
    """Turns change events into delivered notifications."""

    channel: NotificationChannel
    id_factory: Callable[[], str] = field(default=new_notification_id)

    def notify(
        self,
        item: TrackedItem,
        event: ChangeEvent,
        url: Optional[str] = None,
    ) -> Optional[NotificationRecord]:
        """Deliver one notification; return the click-through record."""
        rendered = format_event(item, event)
        if rendered is None:
            logger.warning("No notification template for event type %r", event.type)
            return None
        title, message = rendered
        notification = Notification(id=self.id_factory(), title=title, message=message)
        try:
            self.channel.send(notification)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to deliver notification for %s", item.label)
            return None
        return NotificationRecord(id=notification.id, url=url or item.url)


__all__ = [
    "CompositeNotifier",
    "DesktopLogNotifier",
    "EventNotifier",
    "Notification",
    "NotificationChannel",
    "SlackNotifier",
    "build_notifier_from_env",
    "format_event",
    "new_notification_id",
]
