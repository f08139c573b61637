"""Canonical character reference illustration, built once per session."""

import logging
from dataclasses import dataclass

from story_personalizer.domain.character import CharacterDescription
from story_personalizer.domain.errors import GenerationError, SheetGenerationError
from story_personalizer.domain.generation import ReferenceImage, ReferenceRole
from story_personalizer.domain.story import DEFAULT_ASPECT_RATIO, StoryTemplate
from story_personalizer.services.assets import AssetRepository
from story_personalizer.services.generation import GenerationEngine, GenerationRequest
from story_personalizer.services.images import detect_mime_type
from story_personalizer.services.prompts import compose_character_sheet_prompt

_logger = logging.getLogger(__name__)


@dataclass
class CharacterSheetService:
    """Builds the session's character sheet and keeps it as the page-0 asset."""

    engine: GenerationEngine
    assets: AssetRepository

    async def ensure_sheet(
        self,
        session_id: str,
        story: StoryTemplate,
        photos: list[bytes],
        model: str,
        description: CharacterDescription | None = None,
    ) -> bytes:
        """Return the existing sheet or generate and store a new one."""
        if self.assets.has_character_sheet(session_id):
            existing = self.assets.get_character_sheet(session_id)
            if existing is not None:
                return existing
        if not photos:
            raise SheetGenerationError("No reference photos for the character sheet")

        prompt = compose_character_sheet_prompt(
            story.illustration_style,
            story.style_profile,
            description.full_description if description else None,
        )
        request = GenerationRequest(
            prompt=prompt,
            references=[
                ReferenceImage(
                    role=ReferenceRole.PHOTO,
                    data=photo,
                    mime_type=detect_mime_type(photo) or "image/jpeg",
                )
                for photo in photos
            ],
            aspect_ratio=DEFAULT_ASPECT_RATIO,
            model=model,
        )
        _logger.info("Generating character sheet for session %s", session_id)
        try:
            result = await self.engine.generate(request, allow_fallback=False)
        except (GenerationError, ValueError) as exc:
            raise SheetGenerationError(
                f"Failed to generate character sheet: {exc}"
            ) from exc

        self.assets.save_character_sheet(session_id, result.image)
        _logger.info(
            "Character sheet stored for session %s after %s attempt(s)",
            session_id,
            result.attempts,
        )
        return result.image
