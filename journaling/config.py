"""
Configuration for the journaling client, loading secrets from GCP Secret Manager
with fallback to environment variables.
"""

import os
import logging
from pathlib import Path
from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings
from google.cloud import secretmanager

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Client settings with GCP Secret Manager integration and environment variable fallback."""

    # GCP / Firebase project
    gcp_project_id: str = "journaling-dev"
    firestore_database: str = "(default)"
    firebase_api_key_secret_name: str = "firebase-api-key"
    use_secret_manager: bool = True

    # Backend call behaviour
    journal_max_retries: int = 2
    http_timeout_seconds: float = 15.0
    token_refresh_margin_seconds: int = 300

    # Device-local behaviour
    timezone: Optional[str] = None  # IANA name; None means the device zone
    preferences_path: Path = Path.home() / ".journaling" / "preferences.json"
    log_level: str = "INFO"

    # Loaded secrets (populated from Secret Manager or environment)
    firebase_api_key: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.firebase_api_key:
            self._load_secrets()

    def _load_secrets(self) -> None:
        """Resolve the Firebase Web API key, preferring Secret Manager."""
        if not self.use_secret_manager:
            self.firebase_api_key = os.getenv("FIREBASE_API_KEY", "").strip()
            return
        try:
            client = secretmanager.SecretManagerServiceClient()
            project_path = f"projects/{self.gcp_project_id}"
            logger.info("Loading client secrets from Google Secret Manager...")
            self.firebase_api_key = self._get_secret_with_fallback(
                client, project_path, self.firebase_api_key_secret_name, "FIREBASE_API_KEY"
            )
        except Exception as e:
            logger.warning(f"Could not reach GCP Secret Manager: {e}. Falling back to environment variables.")
            self.firebase_api_key = os.getenv("FIREBASE_API_KEY", "").strip()

    def _get_secret_with_fallback(self, client, project_path: str, secret_name: str, env_var_name: str) -> str:
        """Get a secret value from Secret Manager with environment variable fallback."""
        try:
            secret_path = f"{project_path}/secrets/{secret_name}/versions/latest"
            response = client.access_secret_version(request={"name": secret_path})
            return response.payload.data.decode("UTF-8").strip()
        except Exception as e:
            logger.warning(f"Could not fetch secret '{secret_name}' from GCP Secret Manager: {e}")
            env_value = os.getenv(env_var_name)
            if env_value:
                logger.info(f"Using environment variable {env_var_name} instead.")
                return env_value.strip()
            logger.warning(f"Neither GCP secret '{secret_name}' nor environment variable '{env_var_name}' found.")
            return ""

    def validate_secrets(self) -> bool:
        """Check that the live backend can be reached with the resolved settings."""
        if not self.firebase_api_key:
            logger.warning("FIREBASE_API_KEY is not set; live authentication calls will be rejected.")
            return False
        if self.journal_max_retries < 0:
            logger.warning("journal_max_retries cannot be negative; using 0.")
            self.journal_max_retries = 0
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.validate_secrets()
    return settings
