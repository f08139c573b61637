"""Domain models for personalization sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from story_personalizer.domain.character import CharacterDescription


class SessionStatus(StrEnum):
    """Lifecycle of a personalization session."""

    CREATED = "created"
    PHOTO_UPLOADED = "photo-uploaded"
    GENERATING = "generating"
    COMPLETED = "completed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class GenerationErrorEntry:
    """One failure recorded on the session error log."""

    page_number: int
    attempt: int
    error: str
    timestamp: datetime


@dataclass(frozen=True)
class SessionProgress:
    """Aggregate generation progress for a session."""

    total_pages: int = 0
    pages_generated: int = 0
    current_page: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    errors: tuple[GenerationErrorEntry, ...] = ()

    @property
    def percentage(self) -> int:
        """Share of pages with a selected version, rounded to a whole percent."""
        if self.total_pages <= 0:
            return 0
        return round(self.pages_generated / self.total_pages * 100)


@dataclass(frozen=True)
class ReferencePhoto:
    """Metadata for an uploaded reference photo."""

    ref: str
    mime_type: str
    size: int
    uploaded_at: datetime
    width: int = 0
    height: int = 0
    dpi: float | None = None


@dataclass(frozen=True)
class SessionRecord:
    """Represents a persisted personalization session."""

    id: str
    story_id: str
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.CREATED
    photos: tuple[ReferencePhoto, ...] = ()
    child_name: str | None = None
    progress: SessionProgress = field(default_factory=SessionProgress)
    character_description: CharacterDescription | None = None

    @property
    def has_photos(self) -> bool:
        """Whether at least one reference photo was uploaded."""
        return bool(self.photos)

    def is_expired(self, now: datetime) -> bool:
        """Whether the session is past its expiry time."""
        return now > self.expires_at
