"""Supabase storage bucket for session images."""

import logging
from dataclasses import dataclass
from uuid import uuid4

from storage3.exceptions import StorageApiError
from supabase import Client

from story_personalizer.domain.versions import CHARACTER_SHEET_PAGE
from story_personalizer.services.assets import AssetRepository
from story_personalizer.services.images import detect_mime_type

_logger = logging.getLogger(__name__)

CHARACTER_SHEET_NAME = "character-sheet.png"
_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


@dataclass
class SupabaseAssetRepository(AssetRepository):
    """Stores assets under {session}/photos and {session}/pages/{page}."""

    client: Client
    bucket: str

    def save_photo(
        self, session_id: str, index: int, data: bytes, mime_type: str
    ) -> str:
        """Upload a reference photo."""
        extension = _EXTENSIONS.get(mime_type, "jpg")
        path = f"{session_id}/photos/photo-{index}.{extension}"
        self._upload(path, data, mime_type)
        return path

    def save_page_image(self, session_id: str, page_number: int, data: bytes) -> str:
        """Upload a page render under a unique name."""
        mime_type = detect_mime_type(data) or "image/png"
        extension = _EXTENSIONS.get(mime_type, "png")
        path = f"{session_id}/pages/{page_number}/{uuid4().hex}.{extension}"
        self._upload(path, data, mime_type)
        return path

    def get_asset(self, ref: str) -> bytes | None:
        """Download an asset, returning None when it does not exist."""
        try:
            return self._bucket().download(ref)
        except StorageApiError as exc:
            if _is_not_found(exc):
                return None
            raise

    def delete_asset(self, ref: str) -> None:
        """Remove a single asset."""
        self._bucket().remove([ref])

    def has_character_sheet(self, session_id: str) -> bool:
        """Check for the sheet in the page-0 folder."""
        entries = self._bucket().list(
            _sheet_folder(session_id), {"search": CHARACTER_SHEET_NAME}
        )
        return any(entry.get("name") == CHARACTER_SHEET_NAME for entry in entries)

    def get_character_sheet(self, session_id: str) -> bytes | None:
        """Download the character sheet, if present."""
        return self.get_asset(f"{_sheet_folder(session_id)}/{CHARACTER_SHEET_NAME}")

    def save_character_sheet(self, session_id: str, data: bytes) -> str:
        """Upload the character sheet as the page-0 asset."""
        path = f"{_sheet_folder(session_id)}/{CHARACTER_SHEET_NAME}"
        self._upload(path, data, detect_mime_type(data) or "image/png")
        return path

    def delete_session_assets(self, session_id: str) -> None:
        """Remove every file stored under the session prefix."""
        paths = self._list_files(session_id)
        if paths:
            self._bucket().remove(paths)
            _logger.info("Removed %s asset(s) for session %s", len(paths), session_id)

    def _list_files(self, prefix: str) -> list[str]:
        paths: list[str] = []
        for entry in self._bucket().list(prefix):
            path = f"{prefix}/{entry['name']}"
            if entry.get("id") is None:
                paths.extend(self._list_files(path))
            else:
                paths.append(path)
        return paths

    def _upload(self, path: str, data: bytes, mime_type: str) -> None:
        self._bucket().upload(
            path, data, {"content-type": mime_type, "upsert": "true"}
        )

    def _bucket(self):  # type: ignore[no-untyped-def]
        return self.client.storage.from_(self.bucket)


def _sheet_folder(session_id: str) -> str:
    return f"{session_id}/pages/{CHARACTER_SHEET_PAGE}"


def _is_not_found(exc: StorageApiError) -> bool:
    status = str(getattr(exc, "status", ""))
    return status in {"400", "404"} or "not found" in str(exc).lower()
