"""Image generation with retries and a reduced-reference fallback."""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Protocol

from story_personalizer.domain.errors import GenerationError
from story_personalizer.domain.generation import (
    GenerationResult,
    ReferenceImage,
    ReferenceRole,
)
from story_personalizer.services.retry import Jitter, Sleeper, backoff_delay

_logger = logging.getLogger(__name__)

MAX_REFERENCES = 3


class NoImageContentError(Exception):
    """The model answered but produced no usable image."""


class TransientGenerationError(Exception):
    """The call failed for a reason unrelated to the request content."""


class ImageGenerationClient(Protocol):
    """Interface for the external image generation service."""

    async def generate(
        self,
        *,
        prompt: str,
        images: list[ReferenceImage],
        aspect_ratio: str,
        model: str,
    ) -> bytes:
        """Return generated image bytes or raise a generation error."""


@dataclass(frozen=True)
class GenerationRequest:
    """A composed prompt with its ordered reference images."""

    prompt: str
    references: list[ReferenceImage]
    aspect_ratio: str
    model: str
    fallback_prompt: str | None = None


@dataclass(frozen=True)
class AttemptStrategy:
    """One tier of the retry policy with its own attempt budget."""

    name: str
    max_attempts: int
    photo_only: bool = False

    def applies(
        self, request: GenerationRequest, last_error: Exception | None
    ) -> bool:
        """Whether this tier should run given the previous tier's failure."""
        if not self.photo_only:
            return last_error is None
        return len(request.references) > 1 and isinstance(
            last_error, NoImageContentError
        )

    def prompt_for(self, request: GenerationRequest) -> str:
        """Prompt used by this tier."""
        if self.photo_only and request.fallback_prompt:
            return request.fallback_prompt
        return request.prompt

    def references_for(self, request: GenerationRequest) -> list[ReferenceImage]:
        """References used by this tier."""
        if not self.photo_only:
            return list(request.references)
        return request.references[:1]


def default_strategies(
    max_retries: int = 3, fallback_max_retries: int = 2
) -> list[AttemptStrategy]:
    """Full-reference retries followed by a photo-only fallback."""
    return [
        AttemptStrategy(name="full", max_attempts=max_retries),
        AttemptStrategy(
            name="photo_only", max_attempts=fallback_max_retries, photo_only=True
        ),
    ]


@dataclass
class _StrategyExhaustedError(Exception):
    last_error: Exception
    attempts: int


@dataclass
class GenerationEngine:
    """Runs a generation request through the ordered attempt strategies."""

    client: ImageGenerationClient
    strategies: list[AttemptStrategy] = field(default_factory=default_strategies)
    sleep: Sleeper = asyncio.sleep
    jitter: Jitter = random.uniform

    async def generate(
        self, request: GenerationRequest, *, allow_fallback: bool = True
    ) -> GenerationResult:
        """Return one generated image or raise GenerationError."""
        _validate_references(request.references)
        strategies = self.strategies if allow_fallback else self.strategies[:1]
        last_error: Exception | None = None
        total_attempts = 0
        for strategy in strategies:
            if not strategy.applies(request, last_error):
                continue
            references = strategy.references_for(request)
            _logger.info(
                "Generation strategy %s: %s reference(s), up to %s attempt(s)",
                strategy.name,
                len(references),
                strategy.max_attempts,
            )
            try:
                image, attempts = await self._run(
                    strategy, strategy.prompt_for(request), references, request
                )
            except _StrategyExhaustedError as exhausted:
                last_error = exhausted.last_error
                total_attempts += exhausted.attempts
                continue
            return GenerationResult(
                image=image,
                strategy=strategy.name,
                attempts=total_attempts + attempts,
                reference_count=len(references),
            )

        _logger.error(
            "Generation failed after %s attempt(s): %s", total_attempts, last_error
        )
        raise GenerationError(
            f"Failed to generate image after {total_attempts} attempts: {last_error}"
        )

    async def _run(
        self,
        strategy: AttemptStrategy,
        prompt: str,
        references: list[ReferenceImage],
        request: GenerationRequest,
    ) -> tuple[bytes, int]:
        last_error: Exception = TransientGenerationError("no attempts were made")
        for attempt in range(1, strategy.max_attempts + 1):
            try:
                image = await self.client.generate(
                    prompt=prompt,
                    images=references,
                    aspect_ratio=request.aspect_ratio,
                    model=request.model,
                )
            except (NoImageContentError, TransientGenerationError) as exc:
                last_error = exc
            except Exception as exc:
                last_error = TransientGenerationError(str(exc))
            else:
                return image, attempt

            _logger.warning(
                "Generation %s attempt %s/%s failed: %s",
                strategy.name,
                attempt,
                strategy.max_attempts,
                last_error,
            )
            if attempt < strategy.max_attempts:
                await self.sleep(backoff_delay(attempt, self.jitter))
        raise _StrategyExhaustedError(
            last_error=last_error, attempts=strategy.max_attempts
        )


def _validate_references(references: list[ReferenceImage]) -> None:
    if not 1 <= len(references) <= MAX_REFERENCES:
        raise ValueError(
            f"Expected 1-{MAX_REFERENCES} reference images, got {len(references)}"
        )
    if references[0].role is not ReferenceRole.PHOTO:
        raise ValueError("The first reference image must be the raw photo")
