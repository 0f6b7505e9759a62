"""
Journal capability: CRUD on entries keyed by user id / entry id.

`FirestoreJournalService` stores entries in the `journalEntries` collection
and wraps every network call in bounded retry.
"""

import abc
import logging
import random
import uuid
from datetime import timedelta
from typing import List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError

from .. import database
from ..clock import Clock, SystemClock
from ..errors import JournalError
from ..schemas import JournalEntry, Mood

logger = logging.getLogger(__name__)


class JournalService(abc.ABC):
    """Capability the state container uses to read and write entries."""

    @abc.abstractmethod
    async def fetch_entries(self, user_id: str) -> List[JournalEntry]:
        """All entries of a user, newest first."""

    @abc.abstractmethod
    async def fetch_entry(self, entry_id: str) -> JournalEntry: ...

    @abc.abstractmethod
    async def create_entry(self, entry: JournalEntry) -> JournalEntry:
        """Store a new entry and return it with its id."""

    @abc.abstractmethod
    async def update_entry(self, entry: JournalEntry) -> JournalEntry: ...

    @abc.abstractmethod
    async def delete_entry(self, entry_id: str) -> None: ...


SAMPLE_TAGS = ["work", "family", "health", "gratitude", "ideas", "goals", "reflection", "learning"]


class InMemoryJournalService(JournalService):
    """Deterministic fake holding entries in a list. Calls are recorded in `calls`."""

    def __init__(self, entries: Optional[List[JournalEntry]] = None):
        self.entries: List[JournalEntry] = list(entries or [])
        self.calls: List[str] = []
        self._failures: List[JournalError] = []

    def fail_with(self, error: JournalError) -> None:
        """Make the next call raise `error`."""
        self._failures.append(error)

    def _record(self, call: str) -> None:
        self.calls.append(call)
        if self._failures:
            raise self._failures.pop(0)

    def _index_of(self, entry_id: Optional[str]) -> int:
        for index, entry in enumerate(self.entries):
            if entry.id == entry_id:
                return index
        raise JournalError.not_found()

    async def fetch_entries(self, user_id: str) -> List[JournalEntry]:
        self._record("fetch_entries")
        owned = [entry for entry in self.entries if entry.user_id == user_id]
        return sorted(owned, key=lambda entry: entry.created_at, reverse=True)

    async def fetch_entry(self, entry_id: str) -> JournalEntry:
        self._record("fetch_entry")
        return self.entries[self._index_of(entry_id)]

    async def create_entry(self, entry: JournalEntry) -> JournalEntry:
        self._record("create_entry")
        stored = entry if entry.is_persisted else entry.evolve(id=str(uuid.uuid4()))
        self.entries.append(stored)
        return stored

    async def update_entry(self, entry: JournalEntry) -> JournalEntry:
        self._record("update_entry")
        if not entry.is_persisted:
            raise JournalError.invalid_data("Entry ID is empty")
        self.entries[self._index_of(entry.id)] = entry
        return entry

    async def delete_entry(self, entry_id: str) -> None:
        self._record("delete_entry")
        del self.entries[self._index_of(entry_id)]

    def seed_sample_entries(
        self,
        user_id: str,
        clock: Optional[Clock] = None,
        days: int = 14,
        seed: Optional[int] = None,
    ) -> List[JournalEntry]:
        """Add development sample data: every even day back from today, plus a random half of the odd ones."""
        clock = clock or SystemClock()
        rng = random.Random(seed)
        moods = list(Mood)
        added = []
        for day in range(days):
            if day % 2 != 0 and rng.randint(0, 1) == 0:
                continue
            when = clock.now() - timedelta(days=day)
            entry = JournalEntry(
                id=str(uuid.UUID(int=rng.getrandbits(128))),
                user_id=user_id,
                content=(
                    f"Sample journal entry for {when:%b %d, %Y}. This is what a longer journal entry "
                    "might look like with several sentences of content. It could include thoughts, "
                    "feelings, and reflections on the day."
                ),
                created_at=when,
                updated_at=when,
                mood=rng.choice(moods),
                tags=rng.sample(SAMPLE_TAGS, rng.randint(0, 3)),
            )
            added.append(entry)
        self.entries.extend(added)
        return added


class FirestoreJournalService(database.FirestoreCollection, JournalService):
    """JournalService backed by the `journalEntries` Firestore collection."""

    collection_name = database.ENTRIES_COLLECTION

    @staticmethod
    def _decode(snapshot) -> JournalEntry:
        try:
            return JournalEntry.from_document(snapshot.id, snapshot.to_dict() or {})
        except ValidationError as e:
            logger.error(f"Error decoding entry {snapshot.id}: {e}")
            raise JournalError.decoding_error() from e

    async def fetch_entries(self, user_id: str) -> List[JournalEntry]:
        query = (
            self._collection()
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
        )
        snapshots = await self._with_retry("fetch entries", query.get)
        return [self._decode(snapshot) for snapshot in snapshots]

    async def fetch_entry(self, entry_id: str) -> JournalEntry:
        snapshot = await self._with_retry("fetch entry", self._collection().document(entry_id).get)
        if not snapshot.exists:
            raise JournalError.not_found()
        return self._decode(snapshot)

    async def create_entry(self, entry: JournalEntry) -> JournalEntry:
        stored = entry if entry.is_persisted else entry.evolve(id=str(uuid.uuid4()))
        document = self._collection().document(stored.id)
        await self._with_retry("create entry", lambda: document.set(stored.to_document()))
        return stored

    async def update_entry(self, entry: JournalEntry) -> JournalEntry:
        if not entry.is_persisted:
            raise JournalError.invalid_data("Entry ID is empty")
        document = self._collection().document(entry.id)
        await self._with_retry("update entry", lambda: document.set(entry.to_document(), merge=True))
        return entry

    async def delete_entry(self, entry_id: str) -> None:
        document = self._collection().document(entry_id)
        # Deleting a missing document succeeds silently in Firestore
        snapshot = await self._with_retry("fetch entry", document.get)
        if not snapshot.exists:
            raise JournalError.not_found()
        await self._with_retry("delete entry", document.delete)
