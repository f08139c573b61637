"""Page version models."""

from dataclasses import dataclass, field
from datetime import datetime

CHARACTER_SHEET_PAGE = 0


@dataclass(frozen=True)
class PageVersion:
    """One immutable render of a page."""

    session_id: str
    page_number: int
    version: int
    created_at: datetime
    image_ref: str


@dataclass(frozen=True)
class PageSelection:
    """Selected and favorite version flags for one page."""

    selected_version: int | None = None
    favorite_version: int | None = None

    @property
    def effective_version(self) -> int | None:
        """Version to display: the favorite when set, else the selected one."""
        if self.favorite_version is not None:
            return self.favorite_version
        return self.selected_version


@dataclass(frozen=True)
class PageState:
    """Derived view of a page: its versions and selection."""

    page_number: int
    versions: list[PageVersion] = field(default_factory=list)
    selection: PageSelection = field(default_factory=PageSelection)

    @property
    def version_count(self) -> int:
        """Number of versions generated for the page."""
        return len(self.versions)

    @property
    def selected_version(self) -> int | None:
        """Currently selected version."""
        return self.selection.selected_version

    @property
    def favorite_version(self) -> int | None:
        """Favorite version, if any."""
        return self.selection.favorite_version

    @property
    def effective_version(self) -> int | None:
        """Version to display for the page."""
        return self.selection.effective_version
