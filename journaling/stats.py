"""
Statistics derived from an in-memory list of entries, for the home feed.

No backend round-trip is involved; callers pass whatever `fetch_entries`
returned. Calendar days are taken in the clock's timezone.
"""

from datetime import timedelta
from typing import Dict, Iterable, List, Optional
from pydantic import BaseModel

from .clock import Clock, SystemClock
from .schemas import JournalEntry, Mood


class EntryStats(BaseModel):
    total_entries: int
    day_streak: int
    common_mood: Optional[Mood] = None


def day_streak(entries: Iterable[JournalEntry], clock: Optional[Clock] = None) -> int:
    """
    Count consecutive calendar days with at least one entry, ending at the most
    recent such day.

    The streak is 0 when there are no entries or when the most recent day is
    neither today nor yesterday. Several entries on one day count once, and a
    single missing day ends the run.
    """
    clock = clock or SystemClock()
    days = {clock.day_of(entry.created_at) for entry in entries}
    if not days:
        return 0

    most_recent = max(days)
    today = clock.today()
    if most_recent not in (today, today - timedelta(days=1)):
        return 0

    streak = 0
    current = most_recent
    while current in days:
        streak += 1
        current -= timedelta(days=1)
    return streak


def common_mood(entries: Iterable[JournalEntry]) -> Optional[Mood]:
    """
    Most frequent mood, or None for no entries.

    Ties go to the mood seen first while iterating `entries`; with the newest
    first ordering of `fetch_entries` that is the most recently used one.
    """
    counts: Dict[Mood, int] = {}
    for entry in entries:
        counts[entry.mood] = counts.get(entry.mood, 0) + 1
    if not counts:
        return None
    # max() keeps the first maximal key, and dicts iterate in insertion order.
    return max(counts, key=counts.__getitem__)


def summarize(entries: List[JournalEntry], clock: Optional[Clock] = None) -> EntryStats:
    return EntryStats(
        total_entries=len(entries),
        day_streak=day_streak(entries, clock),
        common_mood=common_mood(entries),
    )
