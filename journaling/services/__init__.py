from .auth import AuthService, InMemoryAuthService, FirebaseAuthService
from .journal import JournalService, InMemoryJournalService, FirestoreJournalService
from .profile import ProfileService, InMemoryProfileService, FirestoreProfileService

__all__ = [
    "AuthService",
    "InMemoryAuthService",
    "FirebaseAuthService",
    "JournalService",
    "InMemoryJournalService",
    "FirestoreJournalService",
    "ProfileService",
    "InMemoryProfileService",
    "FirestoreProfileService",
]
