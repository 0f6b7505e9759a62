"""
Closed error taxonomies for authentication and journal operations.

Each error carries a kind and a fixed, user-facing message. Only the
`database_error` and `invalid_data` journal kinds carry a detail string.
"""

from enum import Enum
from typing import Optional


NETWORK_MESSAGE = "Network error. Please check your connection and try again."
UNKNOWN_MESSAGE = "An unknown error occurred. Please try again later."


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK_ERROR = "network_error"
    USER_ALREADY_EXISTS = "user_already_exists"
    WEAK_PASSWORD = "weak_password"
    UNKNOWN = "unknown"


class JournalErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    NETWORK_ERROR = "network_error"
    NOT_FOUND = "not_found"
    DECODING_ERROR = "decoding_error"
    DATABASE_ERROR = "database_error"
    INVALID_DATA = "invalid_data"
    UNKNOWN = "unknown"


_AUTH_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password. Please try again.",
    AuthErrorKind.NETWORK_ERROR: NETWORK_MESSAGE,
    AuthErrorKind.USER_ALREADY_EXISTS: "An account with this email already exists.",
    AuthErrorKind.WEAK_PASSWORD: "Password must be at least 8 characters with numbers and special characters.",
    AuthErrorKind.UNKNOWN: UNKNOWN_MESSAGE,
}

_JOURNAL_MESSAGES = {
    JournalErrorKind.UNAUTHORIZED: "You need to be logged in to perform this action.",
    JournalErrorKind.NETWORK_ERROR: NETWORK_MESSAGE,
    JournalErrorKind.NOT_FOUND: "The requested journal entry could not be found.",
    JournalErrorKind.DECODING_ERROR: "There was an error processing the data. Please try again.",
    JournalErrorKind.DATABASE_ERROR: "Database error: {detail}",
    JournalErrorKind.INVALID_DATA: "Invalid data: {detail}",
    JournalErrorKind.UNKNOWN: UNKNOWN_MESSAGE,
}

_DETAIL_KINDS = {JournalErrorKind.DATABASE_ERROR, JournalErrorKind.INVALID_DATA}


class AuthError(Exception):
    """Failure of an authentication operation."""

    def __init__(self, kind: AuthErrorKind):
        self.kind = AuthErrorKind(kind)
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return _AUTH_MESSAGES[self.kind]

    def __eq__(self, other):
        return isinstance(other, AuthError) and other.kind == self.kind

    def __hash__(self):
        return hash(self.kind)

    def __repr__(self):
        return f"AuthError({self.kind.value})"

    @classmethod
    def invalid_credentials(cls) -> "AuthError":
        return cls(AuthErrorKind.INVALID_CREDENTIALS)

    @classmethod
    def network_error(cls) -> "AuthError":
        return cls(AuthErrorKind.NETWORK_ERROR)

    @classmethod
    def user_already_exists(cls) -> "AuthError":
        return cls(AuthErrorKind.USER_ALREADY_EXISTS)

    @classmethod
    def weak_password(cls) -> "AuthError":
        return cls(AuthErrorKind.WEAK_PASSWORD)

    @classmethod
    def unknown(cls) -> "AuthError":
        return cls(AuthErrorKind.UNKNOWN)


class JournalError(Exception):
    """Failure of a journal or profile operation."""

    def __init__(self, kind: JournalErrorKind, detail: Optional[str] = None):
        self.kind = JournalErrorKind(kind)
        self.detail = detail if self.kind in _DETAIL_KINDS else None
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return _JOURNAL_MESSAGES[self.kind].format(detail=self.detail or "")

    def __eq__(self, other):
        return isinstance(other, JournalError) and (other.kind, other.detail) == (self.kind, self.detail)

    def __hash__(self):
        return hash((self.kind, self.detail))

    def __repr__(self):
        if self.detail is not None:
            return f"JournalError({self.kind.value}, {self.detail!r})"
        return f"JournalError({self.kind.value})"

    @classmethod
    def unauthorized(cls) -> "JournalError":
        return cls(JournalErrorKind.UNAUTHORIZED)

    @classmethod
    def network_error(cls) -> "JournalError":
        return cls(JournalErrorKind.NETWORK_ERROR)

    @classmethod
    def not_found(cls) -> "JournalError":
        return cls(JournalErrorKind.NOT_FOUND)

    @classmethod
    def decoding_error(cls) -> "JournalError":
        return cls(JournalErrorKind.DECODING_ERROR)

    @classmethod
    def database_error(cls, detail: str) -> "JournalError":
        return cls(JournalErrorKind.DATABASE_ERROR, detail)

    @classmethod
    def invalid_data(cls, detail: str) -> "JournalError":
        return cls(JournalErrorKind.INVALID_DATA, detail)

    @classmethod
    def unknown(cls) -> "JournalError":
        return cls(JournalErrorKind.UNKNOWN)
