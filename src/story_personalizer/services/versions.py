"""Page version bookkeeping: dense versions, selection and favorites."""

import logging
from dataclasses import dataclass
from typing import Protocol

from story_personalizer.domain.errors import (
    RegenerationLimitExceeded,
    VersionNotFound,
)
from story_personalizer.domain.versions import PageSelection, PageState, PageVersion
from story_personalizer.services.assets import AssetRepository
from story_personalizer.services.clock import Clock, utcnow

_logger = logging.getLogger(__name__)


class VersionRepository(Protocol):
    """Persistence interface for page versions and per-page selection flags."""

    def count_versions(self, session_id: str, page_number: int) -> int:
        """Return how many versions a page has."""

    def list_versions(self, session_id: str, page_number: int) -> list[PageVersion]:
        """Return a page's versions ordered by version number."""

    def get_version(
        self, session_id: str, page_number: int, version: int
    ) -> PageVersion | None:
        """Return one version, if present."""

    def try_create_version(self, version: PageVersion, expected_count: int) -> bool:
        """Insert the version only if the page still has expected_count versions."""

    def get_selection(self, session_id: str, page_number: int) -> PageSelection:
        """Return the page's selected and favorite versions."""

    def list_selections(self, session_id: str) -> dict[int, PageSelection]:
        """Return selection flags for every page that has any."""

    def set_selected(self, session_id: str, page_number: int, version: int) -> None:
        """Mark one version as the page's selected version."""

    def set_favorite(
        self, session_id: str, page_number: int, version: int | None
    ) -> None:
        """Mark one version as favorite, or clear the favorite."""

    def delete_session(self, session_id: str) -> None:
        """Remove every version and selection of a session."""


def regenerations_used(version_count: int) -> int:
    """Regenerations consumed by a page; the first render is free."""
    return max(version_count - 1, 0)


def remaining_regenerations(version_count: int, max_regenerations: int) -> int:
    """Regenerations still allowed for a page."""
    return max(max_regenerations - regenerations_used(version_count), 0)


@dataclass
class VersionService:
    """The only writer of durable page state."""

    repository: VersionRepository
    assets: AssetRepository
    clock: Clock = utcnow

    def create_version(
        self,
        session_id: str,
        page_number: int,
        image: bytes,
        max_regenerations: int,
    ) -> PageVersion:
        """Store a render as the page's next version.

        The version number is claimed with a compare-and-swap on the page's
        version count, so two concurrent writers can never produce the same
        number or slip past the regeneration limit together. A writer that
        loses the race re-reads the count and checks the limit again.
        """
        while True:
            count = self.repository.count_versions(session_id, page_number)
            self.ensure_below_limit(session_id, page_number, count, max_regenerations)
            ref = self.assets.save_page_image(session_id, page_number, image)
            version = PageVersion(
                session_id=session_id,
                page_number=page_number,
                version=count + 1,
                created_at=self.clock(),
                image_ref=ref,
            )
            if self.repository.try_create_version(version, expected_count=count):
                break
            _logger.warning(
                "Version %s of page %s in session %s was taken concurrently",
                version.version,
                page_number,
                session_id,
            )
            self.assets.delete_asset(ref)

        if version.version == 1:
            self.repository.set_selected(session_id, page_number, 1)
        _logger.info(
            "Created version %s of page %s in session %s",
            version.version,
            page_number,
            session_id,
        )
        return version

    def count_versions(self, session_id: str, page_number: int) -> int:
        """Return how many versions a page has."""
        return self.repository.count_versions(session_id, page_number)

    def select_version(
        self, session_id: str, page_number: int, version: int
    ) -> PageState:
        """Make one existing version the page's selected version."""
        self._ensure_exists(session_id, page_number, version)
        self.repository.set_selected(session_id, page_number, version)
        return self.page_state(session_id, page_number)

    def set_favorite(
        self, session_id: str, page_number: int, version: int | None
    ) -> PageState:
        """Mark a version as favorite; None clears the favorite."""
        if version is not None:
            self._ensure_exists(session_id, page_number, version)
        self.repository.set_favorite(session_id, page_number, version)
        return self.page_state(session_id, page_number)

    def page_state(self, session_id: str, page_number: int) -> PageState:
        """Return a page's versions and selection."""
        return PageState(
            page_number=page_number,
            versions=self.repository.list_versions(session_id, page_number),
            selection=self.repository.get_selection(session_id, page_number),
        )

    def session_state(self, session_id: str, total_pages: int) -> list[PageState]:
        """Return the state of every page of a story."""
        return [
            self.page_state(session_id, page_number)
            for page_number in range(1, total_pages + 1)
        ]

    def count_selected_pages(self, session_id: str, total_pages: int) -> int:
        """Count story pages that have a selected version."""
        selections = self.repository.list_selections(session_id)
        return sum(
            1
            for page_number in range(1, total_pages + 1)
            if page_number in selections
            and selections[page_number].selected_version is not None
        )

    def get_image(
        self, session_id: str, page_number: int, version: int | None = None
    ) -> bytes:
        """Return the bytes of a version, defaulting to the displayed version."""
        if version is None:
            version = self.repository.get_selection(
                session_id, page_number
            ).effective_version
            if version is None:
                raise VersionNotFound(f"Page {page_number} has no generated version")
        record = self._ensure_exists(session_id, page_number, version)
        image = self.assets.get_asset(record.image_ref)
        if image is None:
            raise VersionNotFound(
                f"Image for version {version} of page {page_number} is missing"
            )
        return image

    def delete_session(self, session_id: str) -> None:
        """Drop every version and selection of a session."""
        self.repository.delete_session(session_id)

    def _ensure_exists(
        self, session_id: str, page_number: int, version: int
    ) -> PageVersion:
        record = (
            self.repository.get_version(session_id, page_number, version)
            if version >= 1
            else None
        )
        if record is None:
            raise VersionNotFound(
                f"Version {version} not found for page {page_number}"
            )
        return record

    @staticmethod
    def ensure_below_limit(
        session_id: str, page_number: int, count: int, max_regenerations: int
    ) -> None:
        """Reject another version when a page has used all its regenerations."""
        if count == 0 or remaining_regenerations(count, max_regenerations) > 0:
            return
        _logger.info(
            "Regeneration limit reached for page %s in session %s (%s versions)",
            page_number,
            session_id,
            count,
        )
        raise RegenerationLimitExceeded(
            f"Maximum regenerations reached ({max_regenerations}) "
            f"for page {page_number}"
        )
