"""Character analysis from reference photos using a vision-language model."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from story_personalizer.domain.character import REQUIRED_FIELDS, CharacterDescription
from story_personalizer.domain.errors import AnalysisError
from story_personalizer.services.cache import DescriptionCache
from story_personalizer.services.images import to_data_url

_logger = logging.getLogger(__name__)

CHARACTER_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {name: {"type": "string"} for name in REQUIRED_FIELDS},
    "required": REQUIRED_FIELDS,
    "additionalProperties": False,
}

ANALYSIS_PROMPT = """You are analyzing photos of a child to create an ULTRA-DETAILED \
physical description for illustration generation. The description must be so specific \
that an illustrator can recreate this exact child's appearance.

Study every photo carefully and answer with a JSON object containing these fields:
- ageRange: age estimate (e.g. "4-5 years old")
- skinTone: precise skin tone with undertones
- eyeColor: precise eye color with details
- eyeShape: eye shape and characteristics
- hairColor: exact hair color with highlights
- hairTexture: hair texture and density
- hairStyle: current hairstyle and parting
- faceShape: face structure
- nose: nose shape and size
- lips: mouth and lip description
- smile: smile characteristics and teeth
- eyebrows: eyebrow shape, thickness and color
- ears: ear description if visible
- cheeks: cheek description
- chin: chin characteristics
- facialProportions: overall face proportions
- distinctiveFeatures: every unique identifying feature (moles, freckles, dimples)
- overallImpression: general appearance
- fullDescription: 4-5 sentences combining all of the above in natural language

Requirements:
- Look for features that are consistent across all photos.
- Use precise color words ("warm chestnut brown", not "brown").
- Mention any unique feature, no matter how small.
- Every field is required. Return only valid JSON, no other text."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class CharacterAnalysisClient(Protocol):
    """Interface for a vision-language model returning structured text."""

    async def analyze(
        self,
        *,
        model: str,
        image_data_urls: list[str],
        schema: dict[str, object],
        prompt: str,
    ) -> str:
        """Return the raw text answer for the prompt and images."""


@dataclass
class CharacterAnalyzer:
    """Turns reference photos into a cached Character Description."""

    client: CharacterAnalysisClient
    model: str
    cache: DescriptionCache

    def remember(self, session_id: str, description: CharacterDescription) -> None:
        """Seed the cache with a description loaded from durable storage."""
        self.cache.set(session_id, description)

    async def analyze(
        self, session_id: str, photos: list[bytes]
    ) -> CharacterDescription:
        """Return the session's description, calling the model on a cache miss."""
        cached = self.cache.get(session_id)
        if cached is not None:
            _logger.info("Using cached description for session %s", session_id)
            return cached
        if not photos:
            raise AnalysisError("No reference photos to analyze")

        _logger.info(
            "Analyzing character for session %s from %s photo(s)",
            session_id,
            len(photos),
        )
        try:
            raw = await self.client.analyze(
                model=self.model,
                image_data_urls=[to_data_url(photo) for photo in photos],
                schema=CHARACTER_SCHEMA,
                prompt=ANALYSIS_PROMPT,
            )
        except Exception as exc:
            raise AnalysisError(f"Failed to analyze character: {exc}") from exc

        description = parse_character_description(raw)
        self.cache.set(session_id, description)
        return description


def parse_character_description(raw: str) -> CharacterDescription:
    """Parse model output into a description, rejecting partial answers."""
    text = _FENCE_RE.sub("", raw.strip()).strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AnalysisError("Character analysis returned non-JSON text") from exc
    if not isinstance(payload, dict):
        raise AnalysisError("Character analysis returned a non-object JSON value")

    for name in REQUIRED_FIELDS:
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            raise AnalysisError(f"Missing required field: {name}")
    try:
        return CharacterDescription.model_validate(payload)
    except ValidationError as exc:
        raise AnalysisError(f"Invalid character description: {exc}") from exc
