"""variantwatch package initialization."""

from .db import Database
from .diff import diff_item
from .extractor import extract_product, extract_snapshot
from .markdown import resolve_markdown
from .models import (
    Badge,
    ChangeEvent,
    ColorKey,
    CycleSummary,
    IdentityHints,
    NotificationRecord,
    Snapshot,
    StockStatus,
    TrackedItem,
    TrackResult,
)
from .runner import CycleContext, VariantWatchRunner
from .scheduler import Scheduler

__all__ = [
    "Badge",
    "ChangeEvent",
    "ColorKey",
    "CycleContext",
    "CycleSummary",
    "Database",
    "IdentityHints",
    "NotificationRecord",
    "Scheduler",
    "Snapshot",
    "StockStatus",
    "TrackResult",
    "TrackedItem",
    "VariantWatchRunner",
    "diff_item",
    "extract_product",
    "extract_snapshot",
    "resolve_markdown",
]
