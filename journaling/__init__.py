from .errors import AuthError, AuthErrorKind, JournalError, JournalErrorKind
from .schemas import JournalEntry, Mood, User
from .state import AppSnapshot, AppState, AuthPhase, StateStore

__all__ = [
    "AuthError",
    "AuthErrorKind",
    "JournalError",
    "JournalErrorKind",
    "JournalEntry",
    "Mood",
    "User",
    "AppSnapshot",
    "AppState",
    "AuthPhase",
    "StateStore",
]
