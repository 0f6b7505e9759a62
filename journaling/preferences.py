"""
Device-local preferences persisted as a small JSON file.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

ONBOARDING_KEY = "hasCompletedOnboarding"
LANGUAGE_KEY = "languageOverride"


class PreferenceStore:
    """Key-value store read once at startup and written on every change."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._values: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable preferences file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring preferences file {self.path}: expected an object")
            return {}
        return data

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value
        self._save()

    @property
    def has_completed_onboarding(self) -> bool:
        return bool(self.get(ONBOARDING_KEY, False))

    def mark_onboarding_completed(self) -> None:
        self.set(ONBOARDING_KEY, True)

    @property
    def language_override(self) -> Optional[str]:
        return self.get(LANGUAGE_KEY)

    @language_override.setter
    def language_override(self, code: Optional[str]) -> None:
        self.set(LANGUAGE_KEY, code or None)
