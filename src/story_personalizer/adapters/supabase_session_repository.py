"""Supabase-backed session repository."""

from dataclasses import dataclass
from datetime import datetime

from supabase import Client

from story_personalizer.domain.character import CharacterDescription
from story_personalizer.domain.sessions import (
    GenerationErrorEntry,
    ReferencePhoto,
    SessionProgress,
    SessionRecord,
    SessionStatus,
)
from story_personalizer.services.sessions import SessionRepository

_TABLE = "story_sessions"
_COLUMNS = (
    "id, story_id, created_at, expires_at, status, child_name, photos, progress, "
    "character_description"
)


@dataclass
class SupabaseSessionRepository(SessionRepository):
    """Supabase implementation for personalization sessions."""

    client: Client

    def create_session(self, session: SessionRecord) -> SessionRecord:
        """Create a session row and return it."""
        response = self.client.table(_TABLE).insert(session_to_row(session)).execute()
        if not response.data:
            raise RuntimeError("Failed to create session")
        return session_from_row(response.data[0])

    def get_session(self, session_id: str) -> SessionRecord | None:
        """Return a session by id, if present."""
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .eq("id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return session_from_row(response.data[0])

    def save_session(self, session: SessionRecord) -> None:
        """Overwrite the mutable columns of a session row."""
        row = session_to_row(session)
        row.pop("id")
        self.client.table(_TABLE).update(row).eq("id", session.id).execute()

    def delete_session(self, session_id: str) -> None:
        """Delete a session row."""
        self.client.table(_TABLE).delete().eq("id", session_id).execute()

    def list_expired_session_ids(self, now: datetime) -> list[str]:
        """Return ids of sessions past their expiry time."""
        response = (
            self.client.table(_TABLE)
            .select("id")
            .lt("expires_at", now.isoformat())
            .execute()
        )
        return [str(row["id"]) for row in response.data or []]


def session_to_row(session: SessionRecord) -> dict[str, object]:
    """Serialize a session into table columns."""
    progress = session.progress
    description = session.character_description
    return {
        "id": session.id,
        "story_id": session.story_id,
        "created_at": session.created_at.isoformat(),
        "expires_at": session.expires_at.isoformat(),
        "status": session.status.value,
        "child_name": session.child_name,
        "photos": [
            {
                "ref": photo.ref,
                "mimeType": photo.mime_type,
                "size": photo.size,
                "uploadedAt": photo.uploaded_at.isoformat(),
                "width": photo.width,
                "height": photo.height,
                "dpi": photo.dpi,
            }
            for photo in session.photos
        ],
        "progress": {
            "totalPages": progress.total_pages,
            "pagesGenerated": progress.pages_generated,
            "currentPage": progress.current_page,
            "startedAt": _iso(progress.started_at),
            "completedAt": _iso(progress.completed_at),
            "errors": [
                {
                    "pageNumber": entry.page_number,
                    "attempt": entry.attempt,
                    "error": entry.error,
                    "timestamp": entry.timestamp.isoformat(),
                }
                for entry in progress.errors
            ],
        },
        "character_description": (
            description.model_dump(by_alias=True) if description else None
        ),
    }


def session_from_row(row: dict[str, object]) -> SessionRecord:
    """Build a session from table columns."""
    progress = row.get("progress") or {}
    description = row.get("character_description")
    return SessionRecord(
        id=str(row["id"]),
        story_id=str(row["story_id"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        expires_at=datetime.fromisoformat(str(row["expires_at"])),
        status=SessionStatus(row["status"]),
        child_name=row.get("child_name"),
        photos=tuple(
            ReferencePhoto(
                ref=photo["ref"],
                mime_type=photo["mimeType"],
                size=int(photo["size"]),
                uploaded_at=datetime.fromisoformat(photo["uploadedAt"]),
                width=int(photo.get("width") or 0),
                height=int(photo.get("height") or 0),
                dpi=photo.get("dpi"),
            )
            for photo in row.get("photos") or []
        ),
        progress=SessionProgress(
            total_pages=int(progress.get("totalPages", 0)),
            pages_generated=int(progress.get("pagesGenerated", 0)),
            current_page=progress.get("currentPage"),
            started_at=_parse_datetime(progress.get("startedAt")),
            completed_at=_parse_datetime(progress.get("completedAt")),
            errors=tuple(
                GenerationErrorEntry(
                    page_number=int(entry["pageNumber"]),
                    attempt=int(entry["attempt"]),
                    error=str(entry["error"]),
                    timestamp=datetime.fromisoformat(entry["timestamp"]),
                )
                for entry in progress.get("errors", [])
            ),
        ),
        character_description=(
            CharacterDescription.model_validate(description) if description else None
        ),
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: object) -> datetime | None:
    return datetime.fromisoformat(value) if isinstance(value, str) else None
