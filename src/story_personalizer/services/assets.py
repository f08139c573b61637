"""Binary asset storage port."""

from typing import Protocol


class AssetRepository(Protocol):
    """Storage for reference photos, page renders and the character sheet."""

    def save_photo(
        self, session_id: str, index: int, data: bytes, mime_type: str
    ) -> str:
        """Store a reference photo and return its reference."""

    def save_page_image(self, session_id: str, page_number: int, data: bytes) -> str:
        """Store a page render under a fresh reference and return it."""

    def get_asset(self, ref: str) -> bytes | None:
        """Return the bytes behind a reference, if present."""

    def delete_asset(self, ref: str) -> None:
        """Delete a single stored asset."""

    def has_character_sheet(self, session_id: str) -> bool:
        """Whether the session's character sheet already exists."""

    def get_character_sheet(self, session_id: str) -> bytes | None:
        """Return the session's character sheet, if present."""

    def save_character_sheet(self, session_id: str, data: bytes) -> str:
        """Store the session's character sheet and return its reference."""

    def delete_session_assets(self, session_id: str) -> None:
        """Delete every asset stored for a session."""
