"""OpenAI Responses API client for character analysis."""

from dataclasses import dataclass

from openai import AsyncOpenAI

from story_personalizer.services.character_analyzer import CharacterAnalysisClient


@dataclass
class OpenAICharacterClient(CharacterAnalysisClient):
    """Character analysis client backed by OpenAI Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str) -> "OpenAICharacterClient":
        """Create an OpenAI character analysis client."""
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def analyze(
        self,
        *,
        model: str,
        image_data_urls: list[str],
        schema: dict[str, object],
        prompt: str,
    ) -> str:
        """Call OpenAI Responses API with structured outputs."""
        content: list[dict[str, object]] = [{"type": "input_text", "text": prompt}]
        content.extend(
            {"type": "input_image", "image_url": url, "detail": "high"}
            for url in image_data_urls
        )
        response = await self.client.responses.create(
            model=model,
            input=[{"role": "user", "content": content}],
            text={
                "format": {
                    "type": "json_schema",
                    "name": "character_description",
                    "strict": True,
                    "schema": schema,
                }
            },
            store=False,
        )
        output_text = response.output_text
        if not output_text:
            raise RuntimeError("OpenAI returned an empty response")
        return output_text
