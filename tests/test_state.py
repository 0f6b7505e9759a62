"""
Tests for the AppState container against the in-memory services.
"""

import asyncio
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import EMAIL, PASSWORD, USER_ID
from journaling.clock import FixedClock
from journaling.errors import AuthError, JournalError
from journaling.notifications import ReminderScheduler
from journaling.preferences import PreferenceStore
from journaling.schemas import Mood, User
from journaling.services import InMemoryAuthService, InMemoryJournalService, InMemoryProfileService
from journaling.state import AppSnapshot, AppState, AuthPhase, StateStore

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


# ==================== StateStore ====================
async def test_store_notifies_only_on_change():
    """Should bump the version and notify only when a field actually changes."""
    store = StateStore(AppSnapshot())
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.update(is_onboarding=True)
    store.update(is_onboarding=False)
    unsubscribe()
    store.update(is_onboarding=True)

    assert [s.version for s in seen] == [0, 1]
    assert store.snapshot.version == 2


async def test_store_change_stream_is_ordered():
    """Should deliver snapshots to async subscribers in mutation order."""
    store = StateStore(AppSnapshot())
    stream = store.changes()
    assert (await stream.__anext__()).version == 0

    store.update(auth_phase=AuthPhase.SIGNED_IN_BASIC)
    store.update(auth_phase=AuthPhase.SIGNED_IN_COMPLETE)
    phases = [(await stream.__anext__()).auth_phase for _ in range(2)]
    await stream.aclose()
    assert not store._queues

    assert phases == [AuthPhase.SIGNED_IN_BASIC, AuthPhase.SIGNED_IN_COMPLETE]


async def test_failing_listener_does_not_block_others():
    """Should keep notifying the remaining listeners when one raises."""
    store = StateStore(AppSnapshot())
    seen = []

    def broken(_):
        raise RuntimeError("listener bug")

    store.subscribe(broken, replay=False)
    store.subscribe(seen.append, replay=False)
    store.update(is_onboarding=False)
    assert len(seen) == 1


# ==================== Initial state ====================
async def test_initial_state_signed_out(app_state):
    """Should start signed out and onboarding on a fresh install."""
    assert app_state.current_user is None
    assert not app_state.is_authenticated
    assert app_state.is_onboarding
    assert app_state.auth_phase == AuthPhase.SIGNED_OUT


async def test_existing_session_is_picked_up(journal_service, clock, tmp_path):
    """Should restore a session the auth service already holds and load its profile on start."""
    user = User.basic(USER_ID, email=EMAIL)
    profiles = InMemoryProfileService({USER_ID: {"name": "Ada", "prefersDarkMode": True}})
    preferences = PreferenceStore(tmp_path / "preferences.json")
    preferences.mark_onboarding_completed()
    state = AppState(InMemoryAuthService(pre_authenticated_user=user), journal_service, profiles, preferences, clock=clock)

    assert state.is_authenticated
    assert not state.is_onboarding
    assert state.auth_phase == AuthPhase.SIGNED_IN_BASIC

    await state.start()
    await state.wait_for_background()
    assert state.auth_phase == AuthPhase.SIGNED_IN_COMPLETE
    assert state.current_user.prefers_dark_mode is True
    await state.stop()


# ==================== Authentication ====================
async def test_login_with_empty_password_never_reaches_backend(app_state, auth_service):
    """Should fail with invalid credentials without contacting the auth service."""
    with pytest.raises(AuthError) as excinfo:
        await app_state.login(EMAIL, "")
    assert excinfo.value == AuthError.invalid_credentials()
    assert auth_service.calls == []
    assert not app_state.is_authenticated


async def test_login_success(app_state, profile_service):
    """Should set the user, go through the basic phase and complete after the profile fetch."""
    phases = []
    app_state.subscribe(lambda snapshot: phases.append(snapshot.auth_phase), replay=False)

    user = await app_state.login(EMAIL, PASSWORD)
    assert user.id == USER_ID
    assert app_state.is_authenticated
    assert app_state.auth_phase == AuthPhase.SIGNED_IN_BASIC

    await app_state.wait_for_background()
    assert app_state.auth_phase == AuthPhase.SIGNED_IN_COMPLETE
    assert phases == [AuthPhase.SIGNED_IN_BASIC, AuthPhase.SIGNED_IN_COMPLETE]
    assert profile_service.calls.count("fetch_profile") == 1


async def test_first_session_creates_profile_document(signed_in, profile_service):
    """Should store a profile document when none exists yet."""
    assert "save_profile" in profile_service.calls
    assert profile_service.profiles[USER_ID]["email"] == EMAIL


async def test_login_merges_stored_profile(app_state, profile_service):
    """Should overlay the stored profile over the identity-only user."""
    profile_service.profiles[USER_ID] = {"journalingGoals": "Gratitude", "notificationsEnabled": False}
    await app_state.login(EMAIL, PASSWORD)
    await app_state.wait_for_background()
    assert app_state.current_user.journaling_goals == "Gratitude"
    assert app_state.current_user.notifications_enabled is False
    assert "save_profile" not in profile_service.calls


async def test_profile_fetch_failure_keeps_basic_user(app_state, profile_service):
    """Should stay signed in with the basic record when the profile cannot be read."""
    profile_service.fail_with(JournalError.network_error())
    await app_state.login(EMAIL, PASSWORD)
    await app_state.wait_for_background()
    assert app_state.is_authenticated
    assert app_state.auth_phase == AuthPhase.SIGNED_IN_BASIC
    assert app_state.current_user.name == "Ada"


async def test_login_wrong_password(app_state):
    """Should surface invalid credentials from the service and stay signed out."""
    with pytest.raises(AuthError) as excinfo:
        await app_state.login(EMAIL, "wrong-password")
    assert excinfo.value.kind.value == "invalid_credentials"
    assert app_state.current_user is None


async def test_unexpected_auth_failure_maps_to_unknown(app_state, auth_service, monkeypatch):
    """Should map a non-taxonomy exception to the unknown kind."""

    async def explode(email, password):
        raise RuntimeError("sdk crashed")

    monkeypatch.setattr(auth_service, "login", explode)
    with pytest.raises(AuthError) as excinfo:
        await app_state.login(EMAIL, PASSWORD)
    assert excinfo.value == AuthError.unknown()


async def test_signup_starts_onboarding(app_state, preferences):
    """Should sign the new user in and (re)enter onboarding."""
    app_state.complete_onboarding()
    user = await app_state.signup("new@example.com", "long-enough-1", "Grace")
    assert app_state.current_user == user
    assert app_state.is_onboarding
    assert user.name == "Grace"


@pytest.mark.parametrize(
    "email, password, name, expected",
    [
        (EMAIL, "another-password", "Ada", AuthError.user_already_exists()),
        ("new@example.com", "short", "Grace", AuthError.weak_password()),
        ("", "long-enough-1", "Grace", AuthError.invalid_credentials()),
    ],
)
async def test_signup_failures(app_state, email, password, name, expected):
    """Should surface signup rejections unchanged."""
    with pytest.raises(AuthError) as excinfo:
        await app_state.signup(email, password, name)
    assert excinfo.value == expected
    assert not app_state.is_authenticated


async def test_reset_password(app_state):
    """Should accept a plausible address and reject anything else, without touching state."""
    await app_state.reset_password(EMAIL)
    with pytest.raises(AuthError):
        await app_state.reset_password("not-an-email")
    assert app_state.snapshot.version == 0


async def test_logout_clears_state(signed_in, reminders):
    """Should drop the user and the authenticated flag."""
    await signed_in.logout()
    assert signed_in.current_user is None
    assert not signed_in.is_authenticated
    assert signed_in.auth_phase == AuthPhase.SIGNED_OUT
    assert not reminders.is_scheduled


async def test_logout_succeeds_locally_when_backend_fails(signed_in, auth_service, monkeypatch):
    """Should clear local state even if the backend sign-out raises."""

    async def fail():
        raise RuntimeError("offline")

    monkeypatch.setattr(auth_service, "logout", fail)
    await signed_in.logout()
    assert not signed_in.is_authenticated


async def test_external_sign_out_clears_state(signed_in, auth_service):
    """Should follow a sign-out reported by the auth service, such as token expiry."""
    auth_service.emit_external(None)
    assert signed_in.current_user is None
    assert signed_in.auth_phase == AuthPhase.SIGNED_OUT


async def test_stale_profile_is_discarded(app_state, auth_service, profile_service):
    """Should ignore a profile that arrives after the session changed."""
    profile_service.profiles[USER_ID] = {"name": "Stale"}
    other = User.basic("user-2", email="other@example.com", name="Other")

    await app_state.login(EMAIL, PASSWORD)
    auth_service.emit_external(other)
    await app_state.wait_for_background()

    assert app_state.current_user.id == "user-2"
    assert app_state.current_user.name == "Other"
    assert app_state.auth_phase == AuthPhase.SIGNED_IN_COMPLETE


async def test_sign_out_while_profile_loads(app_state, auth_service):
    """Should stay signed out when the profile arrives after a sign-out."""
    await app_state.login(EMAIL, PASSWORD)
    auth_service.emit_external(None)
    await app_state.wait_for_background()
    assert app_state.current_user is None
    assert app_state.auth_phase == AuthPhase.SIGNED_OUT


async def test_stop_unsubscribes_from_auth_events(app_state, auth_service):
    """Should ignore auth events after stop."""
    await app_state.stop()
    auth_service.emit_external(User.basic("user-9"))
    assert app_state.current_user is None


# ==================== Journal entries ====================
async def test_fetch_entries_without_user_is_unauthorized(app_state, journal_service):
    """Should fail with unauthorized and never call the journal service."""
    with pytest.raises(JournalError) as excinfo:
        await app_state.fetch_entries()
    assert excinfo.value == JournalError.unauthorized()
    assert journal_service.calls == []


@pytest.mark.parametrize(
    "call",
    [
        lambda state: state.fetch_entry("e1"),
        lambda state: state.create_entry("hello"),
        lambda state: state.delete_entry("e1"),
    ],
)
async def test_entry_operations_require_user(app_state, journal_service, call):
    """Should reject every entry operation while signed out."""
    with pytest.raises(JournalError) as excinfo:
        await call(app_state)
    assert excinfo.value == JournalError.unauthorized()
    assert journal_service.calls == []


async def test_create_entry_stamps_equal_timestamps(signed_in, clock):
    """Should create an entry with createdAt == updatedAt == now and a fresh id."""
    entry = await signed_in.create_entry("First entry", Mood.HAPPY, ["Work", "work"])
    assert entry.is_persisted
    assert entry.user_id == USER_ID
    assert entry.created_at == entry.updated_at == clock.now()
    assert entry.tags == ["work"]


async def test_create_entry_rejects_unknown_mood(signed_in, journal_service):
    """Should report invalid data for a mood outside the enumeration."""
    with pytest.raises(JournalError) as excinfo:
        await signed_in.create_entry("text", mood="ecstatic")
    assert excinfo.value.kind.value == "invalid_data"
    assert "create_entry" not in journal_service.calls


async def test_update_entry_advances_updated_at(signed_in, clock):
    """Should stamp a later updatedAt when the edit happens later."""
    entry = await signed_in.create_entry("draft")
    clock.advance(timedelta(minutes=5))
    updated = await signed_in.update_entry(entry.evolve(content="final"))
    assert updated.updated_at > entry.updated_at
    assert updated.updated_at >= updated.created_at
    assert updated.created_at == entry.created_at
    assert (await signed_in.fetch_entry(entry.id)).content == "final"


async def test_update_entry_never_precedes_creation(signed_in, clock):
    """Should keep updatedAt >= createdAt even if the clock went backwards."""
    entry = await signed_in.create_entry("draft")
    clock.advance(timedelta(hours=-1))
    updated = await signed_in.update_entry(entry.evolve(content="edited"))
    assert updated.updated_at == updated.created_at


async def test_update_entry_requires_id(signed_in, make_entry, journal_service):
    """Should refuse to update an entry that was never stored."""
    with pytest.raises(JournalError) as excinfo:
        await signed_in.update_entry(make_entry(0))
    assert excinfo.value == JournalError.invalid_data("Entry ID is empty")
    assert "update_entry" not in journal_service.calls


async def test_update_unknown_entry_is_not_found(signed_in, make_entry):
    """Should surface not found for an id the service does not know."""
    with pytest.raises(JournalError) as excinfo:
        await signed_in.update_entry(make_entry(0, entry_id="missing"))
    assert excinfo.value == JournalError.not_found()


async def test_create_update_delete_round_trip(signed_in):
    """Should leave no entries behind after create, update and delete."""
    entry = await signed_in.create_entry("round trip", Mood.CONTENT)
    updated = await signed_in.update_entry(entry.evolve(content="round trip, edited"))
    assert [e.content for e in await signed_in.fetch_entries()] == ["round trip, edited"]

    await signed_in.delete_entry(updated.id)
    assert await signed_in.fetch_entries() == []
    with pytest.raises(JournalError):
        await signed_in.delete_entry(updated.id)


async def test_fetch_entries_newest_first_and_only_own(signed_in, journal_service, make_entry):
    """Should return only the user's entries, newest first."""
    journal_service.entries.extend(
        [
            make_entry(3, entry_id="old"),
            make_entry(0, entry_id="new"),
            make_entry(1, entry_id="foreign", user_id="user-2"),
            make_entry(1, entry_id="mid"),
        ]
    )
    assert [e.id for e in await signed_in.fetch_entries()] == ["new", "mid", "old"]


async def test_journal_errors_pass_through(signed_in, journal_service):
    """Should surface journal failures unchanged."""
    journal_service.fail_with(JournalError.database_error("quota exceeded"))
    with pytest.raises(JournalError) as excinfo:
        await signed_in.fetch_entries()
    assert excinfo.value.message == "Database error: quota exceeded"


async def test_entry_stats_and_calendar(signed_in, journal_service, clock):
    """Should compute the home feed statistics and calendar buckets with the state's clock."""
    journal_service.seed_sample_entries(USER_ID, clock, days=14, seed=7)
    entries = await signed_in.fetch_entries()
    stats = signed_in.entry_stats(entries)
    grouped = signed_in.entries_by_date(entries)

    assert stats.total_entries == len(entries)
    assert stats.day_streak >= 1
    assert clock.today() in grouped
    assert sum(len(bucket) for bucket in grouped.values()) == len(entries)


# ==================== Profile and settings ====================
async def test_update_user_profile_is_optimistic(signed_in, profile_service):
    """Should change the local user at once and persist it in the background."""
    task = signed_in.update_user_profile("Ada Lovelace", "Reflect weekly")
    assert signed_in.current_user.name == "Ada Lovelace"
    await task
    assert profile_service.profiles[USER_ID]["journalingGoals"] == "Reflect weekly"


async def test_update_user_profile_requires_user(app_state):
    """Should refuse a profile update while signed out."""
    with pytest.raises(JournalError) as excinfo:
        app_state.update_user_profile("x", "y")
    assert excinfo.value == JournalError.unauthorized()


async def test_failed_settings_write_is_not_rolled_back(signed_in, profile_service, caplog):
    """Should keep the optimistic value and log the failed write."""
    profile_service.fail_with(JournalError.network_error())
    task = signed_in.update_theme_preference(True)
    with pytest.raises(JournalError):
        await task
    await asyncio.sleep(0)
    assert signed_in.current_user.prefers_dark_mode is True
    assert any("save profile" in record.getMessage() for record in caplog.records)


async def test_notification_preferences_reschedule_reminder(signed_in, reminders):
    """Should replace the daily reminder with the new time, or cancel it when disabled."""
    await signed_in.update_notification_preferences(True, time(7, 15))
    assert reminders.is_scheduled
    assert reminders.reminder_time == time(7, 15)
    assert signed_in.current_user.reminder_time == time(7, 15)

    await signed_in.update_notification_preferences(False, time(7, 15))
    assert not reminders.is_scheduled
    assert signed_in.current_user.notifications_enabled is False


async def test_biometric_preference(signed_in, profile_service):
    """Should persist the biometric flag."""
    await signed_in.update_biometric_auth_preference(True)
    assert signed_in.current_user.use_biometric_auth is True
    assert profile_service.profiles[USER_ID]["useBiometricAuth"] is True


async def test_settings_without_user_are_ignored(app_state, profile_service):
    """Should do nothing and contact nobody when signed out."""
    assert app_state.update_theme_preference(True) is None
    assert app_state.update_biometric_auth_preference(True) is None
    assert app_state.update_notification_preferences(True, time(9, 0)) is None
    assert profile_service.calls == []


async def test_profile_loaded_schedules_reminder(signed_in, reminders):
    """Should schedule the default evening reminder once the profile is loaded."""
    assert reminders.is_scheduled
    assert reminders.reminder_time == time(20, 0)


# ==================== Onboarding and language ====================
async def test_complete_onboarding_persists(app_state, preferences, tmp_path):
    """Should clear the onboarding flag and remember it across restarts."""
    app_state.complete_onboarding()
    assert not app_state.is_onboarding
    assert PreferenceStore(tmp_path / "preferences.json").has_completed_onboarding


async def test_language_override(app_state, tmp_path):
    """Should store and clear the language override."""
    app_state.set_language_override("fr")
    assert app_state.language_override == "fr"
    assert PreferenceStore(tmp_path / "preferences.json").language_override == "fr"
    app_state.set_language_override(None)
    assert app_state.language_override is None


# ==================== Ownership ====================
async def test_fetch_foreign_entry_is_unauthorized(signed_in, journal_service, make_entry):
    """Should not hand out another user's entry."""
    journal_service.entries.append(make_entry(0, entry_id="foreign", user_id="user-2"))
    with pytest.raises(JournalError) as excinfo:
        await signed_in.fetch_entry("foreign")
    assert excinfo.value == JournalError.unauthorized()


async def test_delete_foreign_entry_is_unauthorized(signed_in, journal_service, make_entry):
    """Should refuse to delete another user's entry and leave it stored."""
    journal_service.entries.append(make_entry(0, entry_id="foreign", user_id="user-2"))
    with pytest.raises(JournalError) as excinfo:
        await signed_in.delete_entry("foreign")
    assert excinfo.value == JournalError.unauthorized()
    assert "delete_entry" not in journal_service.calls
    assert [e.id for e in journal_service.entries] == ["foreign"]


# ==================== Configured timezone ====================
async def test_reminder_time_survives_configured_zone(auth_service, journal_service, tmp_path):
    """Should keep a 20:00 reminder at 20:00 across sessions when the clock zone is not the device zone."""
    tokyo = ZoneInfo("Asia/Tokyo")
    clock = FixedClock(datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc), tz=tokyo)
    profiles = InMemoryProfileService(tz=tokyo)
    await profiles.save_profile(User.basic(USER_ID, email=EMAIL).evolve(reminder_time=time(20, 0)))
    reminders = ReminderScheduler(deliver=lambda title, body: None, clock=clock)
    state = AppState(
        auth_service, journal_service, profiles, PreferenceStore(tmp_path / "preferences.json"), reminders, clock
    )
    await state.start()

    await state.login(EMAIL, PASSWORD)
    await state.wait_for_background()
    assert state.current_user.reminder_time == time(20, 0)
    assert reminders.reminder_time == time(20, 0)

    # Save again and reload in a new session
    await state.update_theme_preference(True)
    await state.logout()
    await state.login(EMAIL, PASSWORD)
    await state.wait_for_background()
    assert state.current_user.reminder_time == time(20, 0)
    assert state.current_user.prefers_dark_mode is True
    assert reminders.reminder_time == time(20, 0)
    await state.stop()


async def test_aware_reminder_datetime_uses_clock_zone(signed_in, clock):
    """Should take the time of day of an aware datetime in the clock's zone."""
    tokyo_evening = datetime(2024, 3, 15, 20, 0, tzinfo=ZoneInfo("Asia/Tokyo"))
    await signed_in.update_notification_preferences(True, tokyo_evening)
    assert clock.tz == timezone.utc
    assert signed_in.current_user.reminder_time == time(11, 0)
