"""
Wiring of the live Firebase / Firestore services into an AppState.

    async with lifespan() as app_state:
        await app_state.login(email, password)
        entries = await app_state.fetch_entries()
"""

import logging
from contextlib import asynccontextmanager
from datetime import timezone
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from google.auth import exceptions as auth_exceptions
from google.oauth2.credentials import Credentials

from . import database
from .clock import SystemClock
from .config import Settings, get_settings
from .notifications import ReminderScheduler
from .preferences import PreferenceStore
from .services import FirebaseAuthService, FirestoreJournalService, FirestoreProfileService
from .state import AppState

logger = logging.getLogger(__name__)


def firebase_user_credentials(auth: FirebaseAuthService) -> Credentials:
    """Credentials that present the signed-in user's ID token to Firestore."""

    def refresh_handler(request, scopes):
        token, expires_at = auth.id_token, auth.token_expires_at
        if not token or expires_at is None:
            raise auth_exceptions.RefreshError("No signed-in user")
        # google-auth compares expiry against naive UTC
        return token, expires_at.astimezone(timezone.utc).replace(tzinfo=None)

    return Credentials(token=None, refresh_handler=refresh_handler)


def build_app_state(settings: Settings) -> AppState:
    clock = SystemClock.from_name(settings.timezone)
    auth_service = FirebaseAuthService(
        settings.firebase_api_key or "",
        timeout_seconds=settings.http_timeout_seconds,
        refresh_margin_seconds=settings.token_refresh_margin_seconds,
    )
    return AppState(
        auth_service=auth_service,
        journal_service=FirestoreJournalService(max_retries=settings.journal_max_retries),
        profile_service=FirestoreProfileService(max_retries=settings.journal_max_retries, tz=clock.tz),
        preferences=PreferenceStore(settings.preferences_path),
        reminders=ReminderScheduler(clock=clock),
        clock=clock,
    )


@asynccontextmanager
async def lifespan(settings: Optional[Settings] = None) -> AsyncIterator[AppState]:
    """Start the live client and tear it down in reverse order on exit."""
    load_dotenv()
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    logger.info("Journaling client startup...")

    app_state = build_app_state(settings)
    auth_service = app_state.auth_service
    await database.init_firestore(
        settings.gcp_project_id,
        credentials=firebase_user_credentials(auth_service),
        database=settings.firestore_database,
    )
    await auth_service.start()
    await app_state.start()
    logger.info("Journaling client started")

    try:
        yield app_state
    finally:
        logger.info("Journaling client shutdown...")
        await app_state.stop()
        await auth_service.stop()
        await database.close_firestore()
        logger.info("Journaling client shutdown complete")
