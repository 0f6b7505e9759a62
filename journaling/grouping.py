"""Bucketing of entries by calendar day for the calendar view."""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Union

from .clock import Clock, SystemClock
from .schemas import JournalEntry


def group_by_date(entries: Iterable[JournalEntry], clock: Optional[Clock] = None) -> Dict[date, List[JournalEntry]]:
    """Map each local calendar day to its entries, keeping input order within a day."""
    clock = clock or SystemClock()
    grouped: Dict[date, List[JournalEntry]] = {}
    for entry in entries:
        grouped.setdefault(clock.day_of(entry.created_at), []).append(entry)
    return grouped


def entries_on(
    grouped: Dict[date, List[JournalEntry]],
    when: Union[date, datetime],
    clock: Optional[Clock] = None,
) -> List[JournalEntry]:
    """Entries written on the day of `when`; an empty list when there are none."""
    if isinstance(when, datetime):
        day = (clock or SystemClock()).day_of(when)
    else:
        day = when
    return list(grouped.get(day, []))


def days_with_entries(grouped: Dict[date, List[JournalEntry]], year: int, month: int) -> Set[int]:
    """Day-of-month numbers in the given month that have at least one entry."""
    return {day.day for day, items in grouped.items() if items and (day.year, day.month) == (year, month)}
