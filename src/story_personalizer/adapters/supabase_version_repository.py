"""Supabase-backed page version repository."""

import logging
from dataclasses import dataclass
from datetime import datetime

from postgrest.exceptions import APIError
from supabase import Client

from story_personalizer.domain.versions import PageSelection, PageVersion
from story_personalizer.services.versions import VersionRepository

_logger = logging.getLogger(__name__)

_VERSIONS = "page_versions"
_SELECTIONS = "page_selections"
_UNIQUE_VIOLATION = "23505"


@dataclass
class SupabaseVersionRepository(VersionRepository):
    """Versions live in page_versions, unique on (session_id, page_number, version).

    Selection flags live in one page_selections row per page, so a page can
    never have two selected or two favorite versions.
    """

    client: Client

    def count_versions(self, session_id: str, page_number: int) -> int:
        """Return how many versions a page has."""
        response = (
            self.client.table(_VERSIONS)
            .select("version", count="exact")
            .eq("session_id", session_id)
            .eq("page_number", page_number)
            .execute()
        )
        if response.count is not None:
            return int(response.count)
        return len(response.data or [])

    def list_versions(self, session_id: str, page_number: int) -> list[PageVersion]:
        """Return a page's versions ordered by version number."""
        response = (
            self.client.table(_VERSIONS)
            .select("session_id, page_number, version, image_ref, created_at")
            .eq("session_id", session_id)
            .eq("page_number", page_number)
            .order("version")
            .execute()
        )
        return [_version_from_row(row) for row in response.data or []]

    def get_version(
        self, session_id: str, page_number: int, version: int
    ) -> PageVersion | None:
        """Return one version, if present."""
        response = (
            self.client.table(_VERSIONS)
            .select("session_id, page_number, version, image_ref, created_at")
            .eq("session_id", session_id)
            .eq("page_number", page_number)
            .eq("version", version)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _version_from_row(response.data[0])

    def try_create_version(self, version: PageVersion, expected_count: int) -> bool:
        """Insert the next version; a duplicate key means another writer won."""
        if version.version != expected_count + 1:
            return False
        try:
            self.client.table(_VERSIONS).insert(
                {
                    "session_id": version.session_id,
                    "page_number": version.page_number,
                    "version": version.version,
                    "image_ref": version.image_ref,
                    "created_at": version.created_at.isoformat(),
                }
            ).execute()
        except APIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                _logger.info(
                    "Version %s of page %s already exists",
                    version.version,
                    version.page_number,
                )
                return False
            raise
        return True

    def get_selection(self, session_id: str, page_number: int) -> PageSelection:
        """Return the page's selected and favorite versions."""
        response = (
            self.client.table(_SELECTIONS)
            .select("selected_version, favorite_version")
            .eq("session_id", session_id)
            .eq("page_number", page_number)
            .limit(1)
            .execute()
        )
        if not response.data:
            return PageSelection()
        return _selection_from_row(response.data[0])

    def list_selections(self, session_id: str) -> dict[int, PageSelection]:
        """Return selection flags keyed by page number."""
        response = (
            self.client.table(_SELECTIONS)
            .select("page_number, selected_version, favorite_version")
            .eq("session_id", session_id)
            .execute()
        )
        return {
            int(row["page_number"]): _selection_from_row(row)
            for row in response.data or []
        }

    def set_selected(self, session_id: str, page_number: int, version: int) -> None:
        """Upsert the page's selected version."""
        self._upsert(session_id, page_number, {"selected_version": version})

    def set_favorite(
        self, session_id: str, page_number: int, version: int | None
    ) -> None:
        """Upsert or clear the page's favorite version."""
        self._upsert(session_id, page_number, {"favorite_version": version})

    def delete_session(self, session_id: str) -> None:
        """Remove every version and selection of a session."""
        self.client.table(_SELECTIONS).delete().eq("session_id", session_id).execute()
        self.client.table(_VERSIONS).delete().eq("session_id", session_id).execute()

    def _upsert(
        self, session_id: str, page_number: int, values: dict[str, object]
    ) -> None:
        self.client.table(_SELECTIONS).upsert(
            {"session_id": session_id, "page_number": page_number, **values},
            on_conflict="session_id,page_number",
        ).execute()


def _version_from_row(row: dict[str, object]) -> PageVersion:
    return PageVersion(
        session_id=str(row["session_id"]),
        page_number=int(row["page_number"]),
        version=int(row["version"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        image_ref=str(row["image_ref"]),
    )


def _selection_from_row(row: dict[str, object]) -> PageSelection:
    return PageSelection(
        selected_version=row.get("selected_version"),
        favorite_version=row.get("favorite_version"),
    )
