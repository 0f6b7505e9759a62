"""
Authentication capability: contract, an in-memory fake, and the Firebase
Authentication implementation (REST API over aiohttp).
"""

import abc
import asyncio
import itertools
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
from jose import jwt, JWTError
from pydantic import BaseModel

from ..errors import AuthError
from ..schemas import User

logger = logging.getLogger(__name__)

AuthStateListener = Callable[[Optional[User]], None]

MIN_PASSWORD_LENGTH = 8


class AuthService(abc.ABC):
    """
    Capability the state container uses to authenticate.

    Session changes (sign-in, sign-out, expiry) are pushed to listeners
    registered with `add_state_listener` between `start()` and `stop()`.
    """

    def __init__(self):
        self._listeners: Dict[int, AuthStateListener] = {}
        self._handles = itertools.count(1)

    @abc.abstractmethod
    async def login(self, email: str, password: str) -> User: ...

    @abc.abstractmethod
    async def signup(self, email: str, password: str, name: str) -> User: ...

    @abc.abstractmethod
    async def reset_password(self, email: str) -> None: ...

    @abc.abstractmethod
    async def logout(self) -> None: ...

    @abc.abstractmethod
    def get_current_user(self) -> Optional[User]: ...

    async def start(self) -> None:
        """Begin observing the backend session."""

    async def stop(self) -> None:
        """Stop observing the backend session and release resources."""

    def add_state_listener(self, listener: AuthStateListener) -> int:
        handle = next(self._handles)
        self._listeners[handle] = listener
        return handle

    def remove_state_listener(self, handle: int) -> None:
        self._listeners.pop(handle, None)

    def _emit(self, user: Optional[User]) -> None:
        for listener in list(self._listeners.values()):
            try:
                listener(user)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}", exc_info=True)


class InMemoryAuthService(AuthService):
    """Deterministic fake. Every backend-facing call is recorded in `calls`."""

    def __init__(self, pre_authenticated_user: Optional[User] = None):
        super().__init__()
        self._accounts: Dict[str, Tuple[str, User]] = {}
        self._current_user = pre_authenticated_user
        self.calls: List[str] = []
        self.fail_next: Optional[AuthError] = None

    def register(self, email: str, password: str, name: str = "", user_id: Optional[str] = None) -> User:
        """Seed an existing account."""
        user = User.basic(user_id or str(uuid.uuid4()), email=email, name=name)
        self._accounts[email.lower()] = (password, user)
        return user

    def _record(self, call: str) -> None:
        self.calls.append(call)
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

    async def login(self, email: str, password: str) -> User:
        self._record("login")
        if not email or not password:
            raise AuthError.invalid_credentials()
        account = self._accounts.get(email.lower())
        if account is None or account[0] != password:
            raise AuthError.invalid_credentials()
        self._current_user = account[1]
        self._emit(self._current_user)
        return self._current_user

    async def signup(self, email: str, password: str, name: str) -> User:
        self._record("signup")
        if not email or not name:
            raise AuthError.invalid_credentials()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError.weak_password()
        if email.lower() in self._accounts:
            raise AuthError.user_already_exists()
        self._current_user = self.register(email, password, name)
        self._emit(self._current_user)
        return self._current_user

    async def reset_password(self, email: str) -> None:
        self._record("reset_password")
        if not email or "@" not in email or "." not in email:
            raise AuthError.invalid_credentials()

    async def logout(self) -> None:
        self.calls.append("logout")
        self._current_user = None
        self._emit(None)

    def get_current_user(self) -> Optional[User]:
        return self._current_user

    def emit_external(self, user: Optional[User]) -> None:
        """Simulate a session change that happened outside this client."""
        self._current_user = user
        self._emit(user)


# --- Firebase Authentication ---

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

_INVALID_CREDENTIAL_CODES = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "MISSING_EMAIL",
    "MISSING_PASSWORD",
    "USER_DISABLED",
}

# Refresh-token rejections that end the session
_SESSION_ENDING_CODES = {
    "TOKEN_EXPIRED",
    "USER_DISABLED",
    "USER_NOT_FOUND",
    "INVALID_REFRESH_TOKEN",
    "INVALID_GRANT_TYPE",
    "MISSING_REFRESH_TOKEN",
}


def firebase_error_code(message: str) -> str:
    """Extract the code from messages like 'WEAK_PASSWORD : Password should be ...'."""
    return (message or "").split(":", 1)[0].strip().split(" ", 1)[0]


def map_firebase_error(message: str) -> AuthError:
    """Map a Firebase Auth error message onto the auth taxonomy."""
    code = firebase_error_code(message)
    if code in _INVALID_CREDENTIAL_CODES:
        return AuthError.invalid_credentials()
    if code == "EMAIL_EXISTS":
        return AuthError.user_already_exists()
    if code == "WEAK_PASSWORD":
        return AuthError.weak_password()
    return AuthError.unknown()


def read_token_claims(id_token: str) -> Dict[str, Any]:
    """Claims of a Firebase ID token. The signature is checked by the backend, not here."""
    return jwt.get_unverified_claims(id_token)


class FirebaseSession(BaseModel):
    user: User
    id_token: str
    refresh_token: str
    expires_at: datetime


class FirebaseRequestError(Exception):
    """Error response from a Firebase REST endpoint."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.code = firebase_error_code(message)
        super().__init__(f"{status} {message}")


class FirebaseAuthService(AuthService):
    """AuthService backed by the Firebase Authentication REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout_seconds: float = 15.0,
        refresh_margin_seconds: int = 300,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__()
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.refresh_margin = timedelta(seconds=refresh_margin_seconds)
        self._http = http_session
        self._owns_http = http_session is None
        self._session: Optional[FirebaseSession] = None
        self._session_changed = asyncio.Event()
        self._refresh_task: Optional[asyncio.Task] = None
        self.running = False

    # --- lifecycle ---

    async def start(self) -> None:
        if self.running:
            return
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self.timeout)
        self.running = True
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info("Firebase auth session observer started")

    async def stop(self) -> None:
        self.running = False
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
        logger.info("Firebase auth session observer stopped")

    # --- AuthService ---

    async def login(self, email: str, password: str) -> User:
        if not email or not password:
            raise AuthError.invalid_credentials()
        data = await self._call(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._open_session(data)

    async def signup(self, email: str, password: str, name: str) -> User:
        if not email or not name:
            raise AuthError.invalid_credentials()
        data = await self._call(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        try:
            await self._call(
                f"{IDENTITY_TOOLKIT_URL}/accounts:update",
                {"idToken": data["idToken"], "displayName": name, "returnSecureToken": False},
            )
            data["displayName"] = name
        except AuthError as e:
            # The account exists either way; the name is written again with the profile.
            logger.warning(f"Error updating display name after signup: {e.message}")
        user = self._open_session(data)
        if user.name != name:
            user = user.evolve(name=name)
            self._session = self._session.model_copy(update={"user": user})
        return user

    async def reset_password(self, email: str) -> None:
        if not email:
            raise AuthError.invalid_credentials()
        await self._call(
            f"{IDENTITY_TOOLKIT_URL}/accounts:sendOobCode",
            {"requestType": "PASSWORD_RESET", "email": email},
        )

    async def logout(self) -> None:
        # Firebase sign-out is local: dropping the tokens ends the session.
        self._close_session()

    def get_current_user(self) -> Optional[User]:
        return self._session.user if self._session else None

    @property
    def id_token(self) -> Optional[str]:
        return self._session.id_token if self._session else None

    @property
    def token_expires_at(self) -> Optional[datetime]:
        return self._session.expires_at if self._session else None

    # --- HTTP ---

    async def _post(self, url: str, *, json: Optional[dict] = None, form: Optional[dict] = None) -> Dict[str, Any]:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_http = True
        async with self._http.post(url, params={"key": self.api_key}, json=json, data=form) as response:
            body = await response.json(content_type=None)
            if response.status >= 400:
                message = ((body or {}).get("error") or {}).get("message", "")
                raise FirebaseRequestError(response.status, message)
            return body or {}

    async def _call(self, url: str, payload: dict) -> Dict[str, Any]:
        """POST to an identity endpoint, mapping failures onto AuthError."""
        try:
            return await self._post(url, json=payload)
        except FirebaseRequestError as e:
            logger.info(f"Firebase auth request rejected: {e.code}")
            raise map_firebase_error(e.code)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Network error talking to Firebase auth: {e}")
            raise AuthError.network_error()
        except ValueError as e:
            logger.error(f"Unreadable Firebase auth response: {e}")
            raise AuthError.unknown()

    # --- session handling ---

    def _session_from_tokens(self, id_token: str, refresh_token: str, expires_in: Any, fallback: Dict[str, Any]) -> FirebaseSession:
        try:
            claims = read_token_claims(id_token)
        except JWTError:
            claims = {}
        if claims.get("exp"):
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        else:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in or 3600))
        user = User.basic(
            claims.get("user_id") or claims.get("sub") or fallback.get("localId") or fallback.get("user_id"),
            email=claims.get("email") or fallback.get("email"),
            name=claims.get("name") or fallback.get("displayName"),
        )
        return FirebaseSession(user=user, id_token=id_token, refresh_token=refresh_token, expires_at=expires_at)

    def _open_session(self, data: Dict[str, Any]) -> User:
        try:
            session = self._session_from_tokens(data["idToken"], data["refreshToken"], data.get("expiresIn"), data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Firebase auth response missing session fields: {e}")
            raise AuthError.unknown()
        self._session = session
        self._session_changed.set()
        logger.info(f"Signed in as {session.user.id}")
        self._emit(session.user)
        return session.user

    def _close_session(self) -> None:
        was_signed_in = self._session is not None
        self._session = None
        self._session_changed.set()
        if was_signed_in:
            logger.info("Signed out")
            self._emit(None)

    async def refresh_session(self) -> None:
        """Exchange the refresh token for a new ID token, ending the session if it is rejected."""
        session = self._session
        if session is None:
            return
        try:
            data = await self._post(
                SECURE_TOKEN_URL,
                form={"grant_type": "refresh_token", "refresh_token": session.refresh_token},
            )
        except FirebaseRequestError as e:
            if e.code in _SESSION_ENDING_CODES or e.status in (400, 401, 403):
                logger.warning(f"Session ended by backend ({e.code}); signing out")
                if self._session is session:
                    self._close_session()
                return
            raise
        if self._session is not session:
            # Signed out or replaced while the refresh was in flight
            return
        refreshed = self._session_from_tokens(
            data["id_token"], data["refresh_token"], data.get("expires_in"), {"user_id": data.get("user_id")}
        )
        # Keep the profile-level fields the token does not carry
        self._session = refreshed.model_copy(update={"user": session.user})
        logger.info(f"Refreshed ID token for {session.user.id}")

    async def _refresh_loop(self) -> None:
        while self.running:
            self._session_changed.clear()
            session = self._session
            if session is None:
                timeout = None
            else:
                due = session.expires_at - self.refresh_margin
                timeout = max((due - datetime.now(timezone.utc)).total_seconds(), 0)
            try:
                await asyncio.wait_for(self._session_changed.wait(), timeout=timeout)
                continue
            except asyncio.TimeoutError:
                pass
            try:
                await self.refresh_session()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error refreshing auth session: {e}", exc_info=True)
                await asyncio.sleep(30)
