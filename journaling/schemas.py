"""
Pydantic models for journal entries, user profiles and their backend document shape.
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Iterable
from datetime import datetime, time, timezone, tzinfo
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


class Mood(str, Enum):
    """Emotional state recorded with an entry."""

    HAPPY = "happy"
    CONTENT = "content"
    NEUTRAL = "neutral"
    SAD = "sad"
    ANXIOUS = "anxious"
    ANGRY = "angry"

    @property
    def emoji(self) -> str:
        return _MOOD_EMOJI[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()


_MOOD_EMOJI = {
    Mood.HAPPY: "😊",
    Mood.CONTENT: "😌",
    Mood.NEUTRAL: "😐",
    Mood.SAD: "😔",
    Mood.ANXIOUS: "😰",
    Mood.ANGRY: "😡",
}


def normalize_tag(raw: str) -> str:
    """Lowercase and trim a tag as typed by the user."""
    return (raw or "").strip().lower()


def add_tag(tags: List[str], raw: str) -> List[str]:
    """Return tags with raw appended, unless it is empty or already present."""
    tag = normalize_tag(raw)
    if not tag or tag in tags:
        return list(tags)
    return [*tags, tag]


def normalize_tags(raw_tags: Iterable[str]) -> List[str]:
    tags: List[str] = []
    for raw in raw_tags:
        tags = add_tag(tags, raw)
    return tags


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JournalEntry(BaseModel):
    """A single journal record. `id` stays None until the backend has stored it."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: Optional[str] = None
    user_id: str = Field(..., alias="userId", min_length=1)
    content: str = ""
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=_utcnow, alias="updatedAt")
    mood: Mood = Mood.NEUTRAL
    tags: List[str] = Field(default_factory=list)
    is_favorite: bool = Field(False, alias="isFavorite")

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id_is_pending(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: List[str]) -> List[str]:
        return normalize_tags(value)

    @model_validator(mode="after")
    def _updated_not_before_created(self) -> "JournalEntry":
        if (self.created_at.tzinfo is None) != (self.updated_at.tzinfo is None):
            raise ValueError("createdAt and updatedAt must both be timezone-aware or both naive")
        if self.updated_at < self.created_at:
            raise ValueError("updatedAt must not be earlier than createdAt")
        return self

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    def evolve(self, **changes: Any) -> "JournalEntry":
        """Copy with changes applied, re-running validation."""
        data = self.model_dump()
        data.update(changes)
        return JournalEntry.model_validate(data)

    def to_document(self) -> Dict[str, Any]:
        """Body stored in the `journalEntries` collection; the id is the document name."""
        data = self.model_dump(by_alias=True, exclude={"id"})
        data["mood"] = self.mood.value
        return data

    @classmethod
    def from_document(cls, document_id: str, data: Dict[str, Any]) -> "JournalEntry":
        return cls.model_validate({**data, "id": document_id})


DEFAULT_REMINDER_TIME = time(20, 0)


class User(BaseModel):
    """User profile and preferences. The backend copy is authoritative."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1)
    email: str = ""
    name: str = ""
    journaling_goals: str = Field("", alias="journalingGoals")
    notifications_enabled: bool = Field(True, alias="notificationsEnabled")
    reminder_time: time = Field(DEFAULT_REMINDER_TIME, alias="reminderTime")
    use_biometric_auth: bool = Field(False, alias="useBiometricAuth")
    prefers_dark_mode: bool = Field(False, alias="prefersDarkMode")

    @field_validator("reminder_time", mode="before")
    @classmethod
    def _time_of_day(cls, value, info: ValidationInfo):
        # Stored as a timestamp (datetime or epoch milliseconds); only hour and minute matter.
        # Timestamps are read in the "tz" passed as validation context, else the device zone.
        tz = (info.context or {}).get("tz")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone(tz)
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(tz)
            return time(value.hour, value.minute)
        if isinstance(value, time):
            return time(value.hour, value.minute)
        return value

    @classmethod
    def basic(cls, id: str, email: Optional[str] = None, name: Optional[str] = None) -> "User":
        """Identity-only record, before the profile document is loaded."""
        return cls(id=id, email=email or "", name=name or "")

    def evolve(self, **changes: Any) -> "User":
        data = self.model_dump()
        data.update(changes)
        return User.model_validate(data)

    def merge_profile(self, document: Dict[str, Any], tz: Optional[tzinfo] = None) -> "User":
        """
        Overlay stored profile fields over this record. Identity stays as is.

        `tz` must be the zone the document was written with (see `to_document`).
        """
        overlay = {k: v for k, v in document.items() if k in _PROFILE_FIELDS and v is not None}
        data = self.model_dump(by_alias=True)
        data.update(overlay)
        data["id"] = self.id
        if not data.get("email"):
            data["email"] = self.email
        return User.model_validate(data, context={"tz": tz})

    def to_document(self, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
        """Document for the `users` collection, with reminderTime as a timestamp."""
        data = self.model_dump(by_alias=True)
        today = datetime.now(tz).date() if tz else datetime.now().date()
        reminder = datetime.combine(today, self.reminder_time)
        data["reminderTime"] = reminder.replace(tzinfo=tz) if tz else reminder.astimezone()
        return data


_PROFILE_FIELDS = {
    "email",
    "name",
    "journalingGoals",
    "notificationsEnabled",
    "reminderTime",
    "useBiometricAuth",
    "prefersDarkMode",
}
