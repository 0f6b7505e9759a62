"""
Shared fixtures: a pinned clock, the in-memory services and an AppState wired to them.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from journaling.clock import FixedClock
from journaling.notifications import ReminderScheduler
from journaling.preferences import PreferenceStore
from journaling.schemas import JournalEntry, Mood
from journaling.services import InMemoryAuthService, InMemoryJournalService, InMemoryProfileService
from journaling.state import AppState

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
USER_ID = "user-1"
EMAIL = "ada@example.com"
PASSWORD = "correct-horse"


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: State container wired to the in-memory services")


# ==================== Fixtures ====================
@pytest.fixture
def clock():
    """Clock pinned to noon UTC on 2024-03-15."""
    return FixedClock(NOW)


@pytest.fixture
def make_entry(clock):
    """Factory for entries written a number of days before the pinned now."""

    def _make(days_ago=0, mood=Mood.NEUTRAL, entry_id=None, user_id=USER_ID, content="", hours=0, tags=()):
        when = clock.now() - timedelta(days=days_ago, hours=hours)
        return JournalEntry(
            id=entry_id,
            user_id=user_id,
            content=content,
            created_at=when,
            updated_at=when,
            mood=mood,
            tags=list(tags),
        )

    return _make


@pytest.fixture
def auth_service():
    """Fake auth backend with one registered account."""
    service = InMemoryAuthService()
    service.register(EMAIL, PASSWORD, name="Ada", user_id=USER_ID)
    return service


@pytest.fixture
def journal_service():
    return InMemoryJournalService()


@pytest.fixture
def profile_service(clock):
    return InMemoryProfileService(tz=clock.tz)


@pytest.fixture
def preferences(tmp_path):
    return PreferenceStore(tmp_path / "preferences.json")


@pytest.fixture
def reminders(clock):
    return ReminderScheduler(deliver=lambda title, body: None, clock=clock)


@pytest_asyncio.fixture
async def app_state(auth_service, journal_service, profile_service, preferences, reminders, clock):
    """Started AppState over the fakes; stopped again after the test."""
    state = AppState(
        auth_service,
        journal_service,
        profile_service=profile_service,
        preferences=preferences,
        reminders=reminders,
        clock=clock,
    )
    await state.start()
    yield state
    await state.stop()


@pytest_asyncio.fixture
async def signed_in(app_state):
    """AppState with the registered user logged in and the profile loaded."""
    await app_state.login(EMAIL, PASSWORD)
    await app_state.wait_for_background()
    return app_state
