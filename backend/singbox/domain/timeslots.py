"""Slot time derivation.

Turns the loosely-typed slot descriptions a cart carries into canonical UTC
ranges. The resolver is pure: identical input always yields an identical
range, which is what makes a failed confirmation safe to retry.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Union

from ..utils.time import parse_iso_instant
from .errors import MalformedSlot

DEFAULT_RESOURCE_ID = 1

_HOUR_PATTERN = re.compile(r"(\d{1,2})(?:\s*[hH:]\s*(\d{2}))?")
_NUMERIC_PATTERN = re.compile(r"\d+(?:\.\d+)?")


@dataclass(frozen=True)
class SlotRequest:
    date: Optional[str] = None
    hour: Union[int, float, str, None] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    tz_offset_minutes: Optional[int] = None
    price: Any = None
    box: Union[int, float, str, None] = None


@dataclass(frozen=True)
class CanonicalTimeRange:
    start: datetime
    end: datetime
    date: date
    duration: int  # minutes

    def overlaps(self, other: "CanonicalTimeRange") -> bool:
        """Half-open overlap: back-to-back ranges do not overlap."""
        return self.start < other.end and self.end > other.start


@dataclass(frozen=True)
class CartItem:
    range: CanonicalTimeRange
    resource_id: int
    price: Any


@dataclass(frozen=True)
class TimeSlotResolver:
    """Resolve slots under one session length and one offset policy.

    Offsets follow the browser ``Date.getTimezoneOffset()`` convention: the
    number of minutes to add to local wall-clock time to reach UTC (Paris is
    -60 in winter, -120 in summer). Slots without an offset use
    ``default_tz_offset_minutes``.
    """

    session_minutes: int = 60
    default_tz_offset_minutes: int = 0

    def resolve(self, slot: SlotRequest) -> CanonicalTimeRange:
        if slot.start_time and slot.end_time:
            return self._resolve_explicit(slot.start_time, slot.end_time, slot.date)

        if not slot.date:
            raise MalformedSlot("slot has neither start_time/end_time nor date")
        day = _parse_day(slot.date)
        hour, minute = parse_hour(slot.hour)

        offset = slot.tz_offset_minutes
        if offset is None:
            offset = self.default_tz_offset_minutes

        wall_clock = datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)
        start = wall_clock + timedelta(minutes=offset)
        end = start + timedelta(minutes=self.session_minutes)
        return CanonicalTimeRange(start=start, end=end, date=day, duration=self.session_minutes)

    def _resolve_explicit(self, start_time: str, end_time: str, day_text: Optional[str]) -> CanonicalTimeRange:
        try:
            start = parse_iso_instant(start_time)
            end = parse_iso_instant(end_time)
        except ValueError as exc:
            raise MalformedSlot(f"invalid start_time/end_time: {exc}") from exc
        if end <= start:
            raise MalformedSlot("end_time must be later than start_time")
        day = _parse_day(day_text or start_time[:10])
        duration = int((end - start).total_seconds() // 60)
        return CanonicalTimeRange(start=start, end=end, date=day, duration=duration)

    def resolve_item(self, slot: SlotRequest) -> CartItem:
        return CartItem(range=self.resolve(slot), resource_id=parse_resource_id(slot.box), price=slot.price)


def parse_hour(value: Union[int, float, str, None]) -> tuple[int, int]:
    """Return ``(hour, minute)`` for a numeric or free-text hour indicator."""
    if value is None or isinstance(value, bool):
        raise MalformedSlot("slot has no hour")

    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC_PATTERN.fullmatch(text):
            return parse_hour(float(text))
        match = _HOUR_PATTERN.search(text)
        if match is None:
            raise MalformedSlot(f"unrecognised hour {value!r}")
        hour = int(match.group(1))
        minute = int(match.group(2)) if match.group(2) else 0
    else:
        number = float(value)
        if not math.isfinite(number) or number < 0:
            raise MalformedSlot(f"unrecognised hour {value!r}")
        hour = int(number)
        minute = int(round((number - hour) * 60))

    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise MalformedSlot(f"hour out of range: {value!r}")
    return hour, minute


def parse_resource_id(raw: Union[int, float, str, None]) -> int:
    """Derive a box id from identifiers such as ``2``, ``"box2"`` or ``"Box 2"``."""
    if raw is None or raw == "":
        return DEFAULT_RESOURCE_ID
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    digits = re.sub(r"[^0-9]", "", str(raw))
    if not digits:
        raise MalformedSlot(f"box identifier {raw!r} has no number")
    resource_id = int(digits)
    if resource_id < 1:
        raise MalformedSlot(f"box identifier {raw!r} is not a valid box")
    return resource_id


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError as exc:
        raise MalformedSlot(f"invalid date {value!r}") from exc
