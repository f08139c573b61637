"""Google Gemini client for reference-guided image generation."""

from dataclasses import dataclass

from google import genai
from google.genai import types

from story_personalizer.domain.generation import ReferenceImage
from story_personalizer.services.generation import (
    ImageGenerationClient,
    NoImageContentError,
    TransientGenerationError,
)

_BLOCKED_FINISH_REASONS = {
    "SAFETY",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "IMAGE_SAFETY",
    "NO_IMAGE",
    "RECITATION",
}


@dataclass
class GeminiImageClient(ImageGenerationClient):
    """Image generation client backed by the Gemini API."""

    client: genai.Client

    @classmethod
    def create(cls, api_key: str) -> "GeminiImageClient":
        """Create a Gemini image client."""
        return cls(client=genai.Client(api_key=api_key))

    async def generate(
        self,
        *,
        prompt: str,
        images: list[ReferenceImage],
        aspect_ratio: str,
        model: str,
    ) -> bytes:
        """Generate one image from the prompt and the ordered references."""
        contents: list[object] = [prompt]
        contents.extend(
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type)
            for image in images
        )
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=model, contents=contents, config=config
            )
        except Exception as exc:
            raise TransientGenerationError(f"Gemini request failed: {exc}") from exc
        return extract_image(response)


def extract_image(response: types.GenerateContentResponse) -> bytes:
    """Return the first inline image of a response or classify why there is none."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None)
    if block_reason:
        raise NoImageContentError(f"Prompt blocked: {_enum_name(block_reason)}")

    candidates = response.candidates or []
    if not candidates:
        raise NoImageContentError("No candidates in response")
    candidate = candidates[0]
    finish_reason = _enum_name(candidate.finish_reason)
    if finish_reason in _BLOCKED_FINISH_REASONS:
        raise NoImageContentError(f"Generation blocked: {finish_reason}")

    parts = candidate.content.parts if candidate.content else None
    if not parts:
        raise NoImageContentError("No content parts in response")
    for part in parts:
        inline_data = part.inline_data
        if inline_data is not None and inline_data.data:
            return inline_data.data
    raise NoImageContentError("No image data in response")


def _enum_name(value: object) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "name", value))
