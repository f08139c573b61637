"""Session lifecycle: creation, expiry, photos, status and progress."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Protocol
from uuid import uuid4

from story_personalizer.domain.character import CharacterDescription
from story_personalizer.domain.errors import InvalidRequest, SessionNotFoundOrExpired
from story_personalizer.domain.sessions import (
    GenerationErrorEntry,
    ReferencePhoto,
    SessionProgress,
    SessionRecord,
    SessionStatus,
)
from story_personalizer.services.assets import AssetRepository
from story_personalizer.services.cache import DescriptionCache
from story_personalizer.services.clock import Clock, utcnow
from story_personalizer.services.images import (
    SUPPORTED_MIME_TYPES,
    ImageInfo,
    detect_mime_type,
    inspect_image,
)
from story_personalizer.services.stories import StoryRepository
from story_personalizer.services.versions import VersionRepository

_logger = logging.getLogger(__name__)

MAX_PHOTOS = 3
MAX_PHOTO_BYTES = 10 * 1024 * 1024
MAX_PHOTO_DPI = 150
MAX_PHOTO_DIMENSION = 4000


class SessionRepository(Protocol):
    """Persistence interface for personalization sessions."""

    def create_session(self, session: SessionRecord) -> SessionRecord:
        """Insert a new session and return it."""

    def get_session(self, session_id: str) -> SessionRecord | None:
        """Return a session by id, if present."""

    def save_session(self, session: SessionRecord) -> None:
        """Persist the full session record."""

    def delete_session(self, session_id: str) -> None:
        """Delete a session record."""

    def list_expired_session_ids(self, now: datetime) -> list[str]:
        """Return ids of sessions whose expiry time has passed."""


@dataclass(frozen=True)
class PhotoUpload:
    """An uploaded reference photo before it is stored."""

    data: bytes
    content_type: str | None = None


@dataclass
class SessionService:
    """Owns the session record for the lifetime of a personalization run."""

    repository: SessionRepository
    stories: StoryRepository
    versions: VersionRepository
    assets: AssetRepository
    cache: DescriptionCache
    ttl_hours: int = 24
    clock: Clock = utcnow

    async def create_session(self, story_id: str) -> SessionRecord:
        """Start a session for a story that the content backend knows."""
        story = await self.stories.get_story(story_id)
        now = self.clock()
        session = SessionRecord(
            id=str(uuid4()),
            story_id=story.id,
            created_at=now,
            expires_at=now + timedelta(hours=self.ttl_hours),
            progress=SessionProgress(total_pages=story.total_pages),
        )
        created = self.repository.create_session(session)
        _logger.info("Created session %s for story %s", created.id, story.id)
        return created

    def get_session(self, session_id: str) -> SessionRecord:
        """Return a live session; expired sessions are reported as missing."""
        session = self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundOrExpired()
        if session.status is SessionStatus.EXPIRED:
            raise SessionNotFoundOrExpired()
        if session.is_expired(self.clock()):
            _logger.info("Session %s has expired", session_id)
            self.repository.save_session(
                replace(session, status=SessionStatus.EXPIRED)
            )
            raise SessionNotFoundOrExpired()
        return session

    def delete_session(self, session_id: str) -> None:
        """Delete a session with its versions, assets and cached description."""
        if self.repository.get_session(session_id) is None:
            raise SessionNotFoundOrExpired()
        self._purge(session_id)
        _logger.info("Deleted session %s", session_id)

    def clean_expired_sessions(self) -> int:
        """Delete every expired session and return how many were removed."""
        expired = self.repository.list_expired_session_ids(self.clock())
        for session_id in expired:
            self._purge(session_id)
        if expired:
            _logger.info("Cleaned %s expired session(s)", len(expired))
        return len(expired)

    def upload_photos(
        self,
        session_id: str,
        photos: list[PhotoUpload],
        child_name: str | None = None,
    ) -> SessionRecord:
        """Validate and store 1-3 reference photos."""
        session = self.get_session(session_id)
        if not photos:
            raise InvalidRequest("No files uploaded")
        if len(photos) > MAX_PHOTOS:
            raise InvalidRequest(f"Maximum {MAX_PHOTOS} photos allowed")

        now = self.clock()
        stored: list[ReferencePhoto] = []
        for index, photo in enumerate(photos, start=1):
            mime_type, info = _validate_photo(photo)
            ref = self.assets.save_photo(session_id, index, photo.data, mime_type)
            stored.append(
                ReferencePhoto(
                    ref=ref,
                    mime_type=mime_type,
                    size=len(photo.data),
                    uploaded_at=now,
                    width=info.width,
                    height=info.height,
                    dpi=info.dpi,
                )
            )
        kept_refs = {photo.ref for photo in stored}
        for previous in session.photos:
            if previous.ref not in kept_refs:
                self.assets.delete_asset(previous.ref)

        status = session.status
        if status is SessionStatus.CREATED:
            status = SessionStatus.PHOTO_UPLOADED
        name = child_name.strip() if child_name else None
        updated = replace(
            session,
            photos=tuple(stored),
            child_name=name or session.child_name,
            status=status,
        )
        self.repository.save_session(updated)
        _logger.info("Stored %s photo(s) for session %s", len(stored), session_id)
        for warning in photo_warnings(updated.photos):
            _logger.warning("Session %s: %s", session_id, warning)
        return updated

    def load_photos(self, session: SessionRecord) -> list[bytes]:
        """Read the session's reference photos, primary photo first."""
        photos: list[bytes] = []
        for photo in session.photos:
            data = self.assets.get_asset(photo.ref)
            if data is None:
                _logger.warning("Reference photo %s is missing", photo.ref)
                continue
            photos.append(data)
        return photos

    def mark_generating(
        self, session: SessionRecord, page_number: int
    ) -> SessionRecord:
        """Note that a page is being generated, entering the generating state."""
        status = session.status
        if status in {SessionStatus.CREATED, SessionStatus.PHOTO_UPLOADED}:
            status = SessionStatus.GENERATING
            _logger.info("Session %s is now generating", session.id)
        progress = replace(
            session.progress,
            current_page=page_number,
            started_at=session.progress.started_at or self.clock(),
        )
        updated = replace(session, status=status, progress=progress)
        self.repository.save_session(updated)
        return updated

    def update_progress(self, session_id: str, selected_pages: int) -> SessionRecord:
        """Store the selected-page count and complete the session when all are set."""
        session = self.get_session(session_id)
        progress = replace(session.progress, pages_generated=selected_pages)
        status = session.status
        total = progress.total_pages
        if total > 0 and selected_pages >= total:
            if status is not SessionStatus.COMPLETED:
                _logger.info("Session %s completed", session_id)
                progress = replace(progress, completed_at=self.clock())
            status = SessionStatus.COMPLETED
        elif status is not SessionStatus.COMPLETED:
            status = SessionStatus.GENERATING
        updated = replace(session, status=status, progress=progress)
        self.repository.save_session(updated)
        return updated

    def record_error(
        self, session_id: str, page_number: int, attempt: int, error: str
    ) -> None:
        """Append a failure to the session error log without changing status."""
        session = self.repository.get_session(session_id)
        if session is None:
            return
        entry = GenerationErrorEntry(
            page_number=page_number,
            attempt=attempt,
            error=error,
            timestamp=self.clock(),
        )
        progress = replace(
            session.progress, errors=(*session.progress.errors, entry)
        )
        self.repository.save_session(replace(session, progress=progress))

    def store_description(
        self, session_id: str, description: CharacterDescription
    ) -> None:
        """Persist a description on the session so restarts can reuse it."""
        session = self.repository.get_session(session_id)
        if session is None:
            return
        self.repository.save_session(
            replace(session, character_description=description)
        )

    def _purge(self, session_id: str) -> None:
        self.versions.delete_session(session_id)
        self.assets.delete_session_assets(session_id)
        self.cache.evict(session_id)
        self.repository.delete_session(session_id)


def photo_warnings(photos: tuple[ReferencePhoto, ...]) -> list[str]:
    """Describe stored photos that are likely to degrade generation."""
    warnings: list[str] = []
    for index, photo in enumerate(photos, start=1):
        if photo.dpi and photo.dpi > MAX_PHOTO_DPI:
            warnings.append(
                f"Photo {index} has high resolution ({photo.dpi:g} DPI). "
                "This may cause generation issues. Consider using a standard photo."
            )
        if photo.width > MAX_PHOTO_DIMENSION or photo.height > MAX_PHOTO_DIMENSION:
            warnings.append(
                f"Photo {index} has very large dimensions "
                f"({photo.width}x{photo.height}). This may cause generation issues."
            )
    return warnings


def _validate_photo(photo: PhotoUpload) -> tuple[str, ImageInfo]:
    mime_type = detect_mime_type(photo.data) or photo.content_type
    if mime_type == "image/jpg":
        mime_type = "image/jpeg"
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise InvalidRequest(
            f"Invalid file type: {mime_type}. Allowed: JPEG, PNG, WebP"
        )
    if not photo.data or len(photo.data) > MAX_PHOTO_BYTES:
        raise InvalidRequest("File too large. Maximum size: 10MB")
    try:
        info = inspect_image(photo.data)
    except ValueError as exc:
        _logger.warning("Rejected undecodable photo: %s", exc)
        raise InvalidRequest("Invalid image file: could not be decoded") from exc
    if info.mime_type not in SUPPORTED_MIME_TYPES:
        raise InvalidRequest(
            f"Invalid file type: {info.mime_type}. Allowed: JPEG, PNG, WebP"
        )
    return info.mime_type, info
