"""Diff utilities for comparing stored items with fresh snapshots."""

from __future__ import annotations

from typing import List

from .models import ChangeEvent, Snapshot, TrackedItem


def diff_item(previous: TrackedItem, fresh: Snapshot) -> List[ChangeEvent]:
    """Compute the change events between a stored item and a fresh snapshot.

    Events come out in a fixed order: status, price, sale, then new colours
    sorted by name.
    """
    changes: List[ChangeEvent] = []

    if previous.stock_status != fresh.stock_status:
        changes.append(ChangeEvent.status_change(previous.stock_status, fresh.stock_status))

    if (
        previous.current_price is not None
        and fresh.current_price is not None
        and previous.current_price != fresh.current_price
    ):
        changes.append(ChangeEvent.price_change(previous.current_price, fresh.current_price))

    if not previous.on_sale and fresh.on_sale:
        changes.append(ChangeEvent.went_on_sale())

    if previous.track_new_colors and previous.available_colors and fresh.available_colors:
        added = fresh.available_colors - previous.available_colors
        for color in sorted(added, key=lambda c: (c.name, c.code)):
            changes.append(ChangeEvent.new_color(color.name))

    return changes
