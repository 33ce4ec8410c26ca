"""
Anniversary recurrence projection.

Computes each event's next occurrence relative to a reference day and keeps
the events whose occurrence falls inside a window. The projection runs in
application code after fetching rows, since yearly recurrence cannot be
expressed in the store's query language.

Rules:
  - The reference is a calendar day; a datetime is truncated to its date.
  - A recurring event occurs every year on its stored month/day. If this
    year's occurrence is before the reference it moves to next year; an
    occurrence on the reference day itself counts (days_until == 0).
  - A non-recurring event occurs once, on its stored date. It is never
    projected once that date has passed.
  - Feb 29 falls on Mar 1 in non-leap years.
  - Rows with malformed dates are skipped and logged.
  - Results are ordered by (days_until, id).
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional

from coupleapp.errors import ValidationError
from coupleapp.storage import RecordStore, get_anniversaries
from coupleapp.utils import parse_calendar_date

logger = logging.getLogger(__name__)


@dataclass
class UpcomingAnniversary:
    anniversary: Any
    next_occurrence: date
    days_until: int


def as_calendar_day(reference: date | datetime) -> date:
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def on_month_day(year: int, month: int, day: int) -> date:
    if month == 2 and day == 29 and not calendar.isleap(year):
        return date(year, 3, 1)
    return date(year, month, day)


def next_occurrence(event: Any, reference: date | datetime) -> Optional[date]:
    """
    Next occurrence of `event` on or after the reference day.

    Returns None for a non-recurring event whose date has passed.

    Raises:
        ValueError: if the stored date is malformed
    """
    today = as_calendar_day(reference)
    origin = parse_calendar_date(event.date)

    if not event.is_recurring:
        return origin if origin >= today else None

    candidate = on_month_day(today.year, origin.month, origin.day)
    if candidate < today:
        candidate = on_month_day(today.year + 1, origin.month, origin.day)
    return candidate


def _project(
    events: Iterable[Any],
    reference: date | datetime,
    owner: Optional[str],
    window_for: Callable[[Any], int],
) -> list[UpcomingAnniversary]:
    today = as_calendar_day(reference)
    projected = []

    for event in events:
        if owner and event.created_by != owner:
            continue
        try:
            occurrence = next_occurrence(event, today)
        except ValueError as e:
            logger.warning(f"Skipping anniversary id={event.id} with malformed date {event.date!r}: {e}")
            continue
        if occurrence is None:
            continue

        days_until = (occurrence - today).days
        if 0 <= days_until <= window_for(event):
            projected.append(UpcomingAnniversary(event, occurrence, days_until))

    projected.sort(key=lambda item: (item.days_until, item.anniversary.id))
    return projected


def upcoming(
    events: Iterable[Any],
    reference: date | datetime,
    window_days: int = 7,
    owner: Optional[str] = None,
) -> list[UpcomingAnniversary]:
    """
    Events whose next occurrence is within `window_days` of the reference day.

    Args:
        events: Anniversary rows (anything with the Anniversary attributes)
        reference: The "today" anchor
        window_days: Inclusive window size in days, >= 0
        owner: When given, only events created by this user

    Returns:
        Matching events with their next occurrence, ordered by (days_until, id)
    """
    if window_days < 0:
        raise ValidationError("window_days must not be negative", {"window_days": window_days})
    return _project(events, reference, owner, lambda event: window_days)


def occurring_today(
    events: Iterable[Any],
    reference: date | datetime,
    owner: Optional[str] = None,
) -> list[UpcomingAnniversary]:
    """Events occurring on the reference day."""
    return upcoming(events, reference, 0, owner)


def reminders(
    events: Iterable[Any],
    reference: date | datetime,
    owner: Optional[str] = None,
) -> list[UpcomingAnniversary]:
    """Events within their own reminder_days of the reference day."""
    return _project(events, reference, owner, lambda event: event.reminder_days or 0)


class AnniversaryProjector:
    """Store-backed wrapper: fetch anniversary rows, then project them."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _fetch(self, owner: Optional[str]) -> list:
        with self.store.session() as db:
            return get_anniversaries(db, created_by=owner)

    def upcoming(
        self,
        window_days: int = 7,
        owner: Optional[str] = None,
        reference: date | datetime | None = None,
    ) -> list[UpcomingAnniversary]:
        reference = reference or date.today()
        result = upcoming(self._fetch(owner), reference, window_days, owner)
        logger.info(f"{len(result)} anniversaries within {window_days} days of {as_calendar_day(reference)}")
        return result

    def today(
        self,
        owner: Optional[str] = None,
        reference: date | datetime | None = None,
    ) -> list[UpcomingAnniversary]:
        return occurring_today(self._fetch(owner), reference or date.today(), owner)

    def reminders(
        self,
        owner: Optional[str] = None,
        reference: date | datetime | None = None,
    ) -> list[UpcomingAnniversary]:
        return reminders(self._fetch(owner), reference or date.today(), owner)
