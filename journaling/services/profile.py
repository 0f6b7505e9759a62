"""
Profile capability: the `users/{id}` document holding name, goals and settings.
"""

import abc
import logging
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional

from google.cloud import firestore

from .. import database
from ..errors import JournalError
from ..retry import DEFAULT_MAX_RETRIES
from ..schemas import User

logger = logging.getLogger(__name__)


class ProfileService(abc.ABC):
    @abc.abstractmethod
    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Stored profile fields, or None when the user has no profile document yet."""

    @abc.abstractmethod
    async def save_profile(self, user: User) -> None: ...


class InMemoryProfileService(ProfileService):
    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None, tz: Optional[tzinfo] = None):
        self.tz = tz
        self.profiles: Dict[str, Dict[str, Any]] = dict(profiles or {})
        self.calls: List[str] = []
        self._failures: List[JournalError] = []

    def fail_with(self, error: JournalError) -> None:
        self._failures.append(error)

    def _record(self, call: str) -> None:
        self.calls.append(call)
        if self._failures:
            raise self._failures.pop(0)

    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        self._record("fetch_profile")
        profile = self.profiles.get(user_id)
        return dict(profile) if profile is not None else None

    async def save_profile(self, user: User) -> None:
        self._record("save_profile")
        self.profiles[user.id] = user.to_document(self.tz)


class FirestoreProfileService(database.FirestoreCollection, ProfileService):
    """Profile documents in the `users` collection, with the same retry and error mapping as entries."""

    collection_name = database.USERS_COLLECTION

    def __init__(
        self,
        client_provider: Callable[[], firestore.AsyncClient] = database.get_client,
        max_retries: int = DEFAULT_MAX_RETRIES,
        tz: Optional[tzinfo] = None,
    ):
        super().__init__(client_provider, max_retries)
        self.tz = tz

    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        snapshot = await self._with_retry("fetch profile", self._collection().document(user_id).get)
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    async def save_profile(self, user: User) -> None:
        document = self._collection().document(user.id)
        await self._with_retry("save profile", lambda: document.set(user.to_document(self.tz), merge=True))
        logger.info(f"Saved profile for user {user.id}")
