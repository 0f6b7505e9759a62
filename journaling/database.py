"""
Firestore client setup for the live journal and profile services.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, TypeVar
from google.api_core import exceptions as gcp_exceptions
from google.auth.credentials import Credentials
from google.cloud import firestore

from .errors import JournalError
from .retry import DEFAULT_MAX_RETRIES, call_with_retry

logger = logging.getLogger(__name__)

ENTRIES_COLLECTION = "journalEntries"
USERS_COLLECTION = "users"

T = TypeVar("T")

# Module-level client shared by the Firestore services
client: Optional[firestore.AsyncClient] = None


async def init_firestore(
    project_id: str,
    credentials: Optional[Credentials] = None,
    database: str = "(default)",
) -> firestore.AsyncClient:
    """Create (or replace) the shared Firestore client."""
    global client
    if client is not None:
        await close_firestore()
    client = firestore.AsyncClient(project=project_id, credentials=credentials, database=database)
    logger.info(f"Firestore client initialized for project {project_id} (database={database})")
    return client


def get_client() -> firestore.AsyncClient:
    """Return the shared client."""
    if client is None:
        raise RuntimeError("Firestore not initialized. Call init_firestore() first.")
    return client


async def close_firestore() -> None:
    """Close the shared client."""
    global client
    if client is None:
        return
    closing = client.close()
    if inspect.isawaitable(closing):
        await closing
    client = None
    logger.info("Firestore client closed")


# Transport-level failures worth re-issuing
RETRYABLE_ERRORS = (
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.DeadlineExceeded,
    gcp_exceptions.InternalServerError,
    gcp_exceptions.TooManyRequests,
    ConnectionError,
    TimeoutError,
)


def map_backend_error(error: Exception) -> JournalError:
    """Map a Firestore / transport exception onto the journal taxonomy."""
    if isinstance(error, JournalError):
        return error
    if isinstance(error, (gcp_exceptions.PermissionDenied, gcp_exceptions.Unauthenticated)):
        return JournalError.unauthorized()
    if isinstance(error, gcp_exceptions.NotFound):
        return JournalError.not_found()
    if isinstance(error, RETRYABLE_ERRORS):
        return JournalError.network_error()
    if isinstance(error, gcp_exceptions.GoogleAPICallError):
        return JournalError.database_error(error.message or str(error))
    return JournalError.unknown()


class FirestoreCollection:
    """Base for services storing documents in one Firestore collection."""

    collection_name: str

    def __init__(
        self,
        client_provider: Callable[[], firestore.AsyncClient] = get_client,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self._client_provider = client_provider
        self.max_retries = max_retries

    def _collection(self):
        return self._client_provider().collection(self.collection_name)

    async def _with_retry(self, description: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a backend call with bounded retry, mapping the final failure onto JournalError."""
        try:
            return await call_with_retry(
                operation, max_retries=self.max_retries, retry_on=RETRYABLE_ERRORS, description=description
            )
        except JournalError:
            raise
        except Exception as e:
            logger.error(f"Error during {description}: {e}")
            raise map_backend_error(e) from e
