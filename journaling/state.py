"""
Application state container.

`AppState` is the single source of truth for who is signed in and whether
onboarding is pending. It composes the auth, journal and profile services and
publishes immutable `AppSnapshot`s through a `StateStore`. All mutation happens
on the running asyncio loop, so subscribers observe a total order of snapshots.

Authentication phases:
    signed_out -> signed_in_basic      login, signup or a session detected by the auth service
    signed_in_basic -> signed_in_complete   profile document fetched and merged
    any -> signed_out                  logout or a sign-out reported by the auth service
"""

import asyncio
import logging
from datetime import date, datetime, time
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .clock import Clock, SystemClock
from .errors import AuthError, JournalError
from .grouping import group_by_date
from .notifications import ReminderScheduler
from .preferences import PreferenceStore
from .schemas import JournalEntry, Mood, User
from .services.auth import AuthService
from .services.journal import JournalService
from .services.profile import ProfileService
from .stats import EntryStats, summarize

logger = logging.getLogger(__name__)


class AuthPhase(str, Enum):
    SIGNED_OUT = "signed_out"
    SIGNED_IN_BASIC = "signed_in_basic"
    SIGNED_IN_COMPLETE = "signed_in_complete"


class AppSnapshot(BaseModel):
    """Everything the UI renders from, at one point in time."""

    model_config = ConfigDict(frozen=True)

    current_user: Optional[User] = None
    is_authenticated: bool = False
    is_onboarding: bool = True
    auth_phase: AuthPhase = AuthPhase.SIGNED_OUT
    version: int = 0


StateListener = Callable[[AppSnapshot], None]


class StateStore:
    """Owns the current snapshot and notifies subscribers of every change, in order."""

    def __init__(self, initial: AppSnapshot):
        self._snapshot = initial
        self._listeners: List[StateListener] = []
        self._queues: Set[asyncio.Queue] = set()

    @property
    def snapshot(self) -> AppSnapshot:
        return self._snapshot

    def subscribe(self, listener: StateListener, replay: bool = True) -> Callable[[], None]:
        """Register a listener (called at once with the current snapshot unless replay=False)."""
        self._listeners.append(listener)
        if replay:
            listener(self._snapshot)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def changes(self) -> AsyncIterator[AppSnapshot]:
        """
        Async stream of snapshots, starting with the current one.

        Every open stream buffers all snapshots it has not consumed yet. A consumer
        that stops iterating early must close the stream, with `await stream.aclose()`
        or `async with contextlib.aclosing(store.changes()) as stream:`.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.add(queue)
        try:
            yield self._snapshot
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    def update(self, **changes) -> AppSnapshot:
        """Apply field changes; subscribers are only notified when something actually changed."""
        current = self._snapshot
        if all(getattr(current, name) == value for name, value in changes.items()):
            return current
        self._snapshot = current.model_copy(update={**changes, "version": current.version + 1})
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)
        for queue in list(self._queues):
            queue.put_nowait(self._snapshot)
        return self._snapshot


class AppState:
    """Mediates between the services and the UI."""

    def __init__(
        self,
        auth_service: AuthService,
        journal_service: JournalService,
        profile_service: Optional[ProfileService] = None,
        preferences: Optional[PreferenceStore] = None,
        reminders: Optional[ReminderScheduler] = None,
        clock: Optional[Clock] = None,
    ):
        self.auth_service = auth_service
        self.journal_service = journal_service
        self.profile_service = profile_service
        self.preferences = preferences or PreferenceStore()
        self.reminders = reminders
        self.clock = clock or SystemClock()

        self._session_generation = 0
        self._listener_handle: Optional[int] = None
        self._pending: Set[asyncio.Task] = set()

        user = auth_service.get_current_user()
        self.store = StateStore(
            AppSnapshot(
                current_user=user,
                is_authenticated=user is not None,
                is_onboarding=not self.preferences.has_completed_onboarding,
                auth_phase=AuthPhase.SIGNED_IN_BASIC if user else AuthPhase.SIGNED_OUT,
            )
        )

    # --- published state ---

    @property
    def snapshot(self) -> AppSnapshot:
        return self.store.snapshot

    @property
    def current_user(self) -> Optional[User]:
        return self.store.snapshot.current_user

    @property
    def is_authenticated(self) -> bool:
        return self.store.snapshot.is_authenticated

    @property
    def is_onboarding(self) -> bool:
        return self.store.snapshot.is_onboarding

    @property
    def auth_phase(self) -> AuthPhase:
        return self.store.snapshot.auth_phase

    def subscribe(self, listener: StateListener, replay: bool = True) -> Callable[[], None]:
        return self.store.subscribe(listener, replay=replay)

    def changes(self) -> AsyncIterator[AppSnapshot]:
        return self.store.changes()

    # --- lifecycle ---

    async def start(self) -> None:
        """Follow session changes reported by the auth service."""
        if self._listener_handle is None:
            self._listener_handle = self.auth_service.add_state_listener(self._on_auth_state_changed)
        if self.auth_phase == AuthPhase.SIGNED_IN_BASIC and self.current_user is not None:
            self._session_generation += 1
            self._spawn(self._load_profile(self.current_user.id, self._session_generation), "load profile")

    async def stop(self) -> None:
        if self._listener_handle is not None:
            self.auth_service.remove_state_listener(self._listener_handle)
            self._listener_handle = None
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if self.reminders:
            self.reminders.cancel_all()

    async def wait_for_background(self) -> None:
        """Wait until profile loads and persistence writes in flight have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task '{task.get_name()}' failed: {error!r}")

    # --- session transitions ---

    def _on_auth_state_changed(self, user: Optional[User]) -> None:
        if user is None:
            self._end_session()
        else:
            self._begin_session(user)

    def _begin_session(self, user: User) -> None:
        current = self.snapshot
        if current.is_authenticated and current.current_user is not None and current.current_user.id == user.id:
            return
        self._session_generation += 1
        logger.info(f"Session started for user {user.id}")
        self.store.update(current_user=user, is_authenticated=True, auth_phase=AuthPhase.SIGNED_IN_BASIC)
        self._spawn(self._load_profile(user.id, self._session_generation), "load profile")

    def _end_session(self) -> None:
        self._session_generation += 1
        if self.snapshot.is_authenticated:
            logger.info("Session ended")
        self.store.update(current_user=None, is_authenticated=False, auth_phase=AuthPhase.SIGNED_OUT)
        if self.reminders:
            self.reminders.cancel_all()

    async def _load_profile(self, user_id: str, generation: int) -> None:
        """Fetch the profile document once and merge it over the identity-only record."""
        document = None
        if self.profile_service is not None:
            try:
                document = await self.profile_service.fetch_profile(user_id)
            except Exception as e:
                logger.error(f"Failed to load profile for {user_id}: {e}")
                return

        current = self.current_user
        if generation != self._session_generation or current is None or current.id != user_id:
            logger.info(f"Discarding profile for {user_id}: session changed while loading")
            return

        try:
            user = current.merge_profile(document, self.clock.tz) if document else current
        except ValidationError as e:
            logger.error(f"Stored profile for {user_id} is invalid: {e}")
            user = current
        self.store.update(current_user=user, auth_phase=AuthPhase.SIGNED_IN_COMPLETE)

        if self.reminders:
            self.reminders.schedule_daily(user.notifications_enabled, user.reminder_time)
        if document is None and self.profile_service is not None:
            # First session for this account: create the profile document
            await self._persist_profile(user)

    # --- authentication ---

    async def login(self, email: str, password: str) -> User:
        if not email or not password:
            raise AuthError.invalid_credentials()
        user = await self._auth_call(self.auth_service.login(email, password))
        self._begin_session(user)
        return user

    async def signup(self, email: str, password: str, name: str) -> User:
        user = await self._auth_call(self.auth_service.signup(email, password, name))
        self._begin_session(user)
        self.store.update(is_onboarding=True)
        return user

    async def reset_password(self, email: str) -> None:
        await self._auth_call(self.auth_service.reset_password(email))

    async def logout(self) -> None:
        """Always succeeds locally, whatever the backend says."""
        try:
            await self.auth_service.logout()
        except Exception as e:
            logger.warning(f"Error signing out: {e}")
        finally:
            self._end_session()

    async def _auth_call(self, call):
        try:
            return await call
        except AuthError:
            raise
        except Exception as e:
            logger.error(f"Unexpected auth service error: {e}", exc_info=True)
            raise AuthError.unknown() from e

    # --- journal entries ---

    def _require_user(self) -> User:
        user = self.current_user
        if user is None:
            raise JournalError.unauthorized()
        return user

    async def _journal_call(self, call):
        try:
            return await call
        except JournalError:
            raise
        except Exception as e:
            logger.error(f"Unexpected journal service error: {e}", exc_info=True)
            raise JournalError.unknown() from e

    async def fetch_entries(self) -> List[JournalEntry]:
        """The signed-in user's entries, newest first."""
        user = self._require_user()
        return await self._journal_call(self.journal_service.fetch_entries(user.id))

    async def fetch_entry(self, entry_id: str) -> JournalEntry:
        user = self._require_user()
        entry = await self._journal_call(self.journal_service.fetch_entry(entry_id))
        if entry.user_id != user.id:
            raise JournalError.unauthorized()
        return entry

    async def create_entry(
        self, content: str, mood: Union[Mood, str] = Mood.NEUTRAL, tags: Iterable[str] = ()
    ) -> JournalEntry:
        user = self._require_user()
        now = self.clock.now()
        try:
            entry = JournalEntry(
                user_id=user.id,
                content=content,
                created_at=now,
                updated_at=now,
                mood=Mood(mood),
                tags=list(tags),
            )
        except (ValueError, ValidationError) as e:
            raise JournalError.invalid_data(str(e)) from e
        return await self._journal_call(self.journal_service.create_entry(entry))

    async def update_entry(self, entry: JournalEntry) -> JournalEntry:
        user = self._require_user()
        if not entry.is_persisted:
            raise JournalError.invalid_data("Entry ID is empty")
        if entry.user_id != user.id:
            raise JournalError.unauthorized()
        now = self.clock.now()
        if entry.created_at.tzinfo is None:
            now = now.astimezone(self.clock.tz).replace(tzinfo=None)
        try:
            updated = entry.evolve(updated_at=max(now, entry.created_at))
        except ValidationError as e:
            raise JournalError.invalid_data(str(e)) from e
        return await self._journal_call(self.journal_service.update_entry(updated))

    async def delete_entry(self, entry_id: str) -> None:
        # Ownership is checked on the stored copy before deleting
        await self.fetch_entry(entry_id)
        await self._journal_call(self.journal_service.delete_entry(entry_id))

    def entry_stats(self, entries: List[JournalEntry]) -> EntryStats:
        return summarize(entries, self.clock)

    def entries_by_date(self, entries: Iterable[JournalEntry]) -> Dict[date, List[JournalEntry]]:
        return group_by_date(entries, self.clock)

    # --- profile and settings ---
    #
    # Each change is applied to the local copy first and then written in the
    # background. A failed write is logged and not rolled back; the returned
    # task lets callers await the write and see the JournalError.

    def update_user_profile(self, name: str, journaling_goals: str) -> Optional[asyncio.Task]:
        user = self._require_user()
        return self._apply_user_change(user.evolve(name=name, journaling_goals=journaling_goals))

    def update_notification_preferences(
        self, enabled: bool, reminder_time: Union[time, datetime]
    ) -> Optional[asyncio.Task]:
        user = self.current_user
        if user is None:
            logger.warning("Ignoring notification preferences update: no signed-in user")
            return None
        if isinstance(reminder_time, datetime) and reminder_time.tzinfo is not None:
            reminder_time = reminder_time.astimezone(self.clock.tz)
        updated = user.evolve(notifications_enabled=enabled, reminder_time=reminder_time)
        if self.reminders:
            self.reminders.schedule_daily(updated.notifications_enabled, updated.reminder_time)
        return self._apply_user_change(updated)

    def update_theme_preference(self, dark_mode: bool) -> Optional[asyncio.Task]:
        user = self.current_user
        if user is None:
            logger.warning("Ignoring theme preference update: no signed-in user")
            return None
        return self._apply_user_change(user.evolve(prefers_dark_mode=dark_mode))

    def update_biometric_auth_preference(self, enabled: bool) -> Optional[asyncio.Task]:
        user = self.current_user
        if user is None:
            logger.warning("Ignoring biometric preference update: no signed-in user")
            return None
        return self._apply_user_change(user.evolve(use_biometric_auth=enabled))

    def _apply_user_change(self, user: User) -> Optional[asyncio.Task]:
        self.store.update(current_user=user)
        if self.profile_service is None:
            return None
        return self._spawn(self._persist_profile(user), "save profile")

    async def _persist_profile(self, user: User) -> None:
        try:
            await self.profile_service.save_profile(user)
        except JournalError:
            raise
        except Exception as e:
            raise JournalError.unknown() from e

    # --- onboarding and language ---

    def complete_onboarding(self) -> None:
        self.store.update(is_onboarding=False)
        self.preferences.mark_onboarding_completed()

    @property
    def language_override(self) -> Optional[str]:
        return self.preferences.language_override

    def set_language_override(self, code: Optional[str]) -> None:
        self.preferences.language_override = code
