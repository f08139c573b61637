"""Optional identity-transfer and restoration pass over generated pages."""

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from story_personalizer.domain.errors import PostProcessError
from story_personalizer.domain.generation import (
    OutcomeStatus,
    PostProcessResult,
    StepOutcome,
)
from story_personalizer.domain.story import PostProcessSettings
from story_personalizer.services.retry import Jitter, Sleeper, backoff_delay

_logger = logging.getLogger(__name__)

IDENTITY_TRANSFER_STEP = "identity_transfer"
RESTORATION_STEP = "restoration"

_RETRY_AFTER_RE = re.compile(r"retry_after[\"':=\s]*(\d+(?:\.\d+)?)", re.IGNORECASE)
_RETRY_AFTER_PADDING_SECONDS = 2.0


class IdentityTransferClient(Protocol):
    """Interface for the external face-swap service."""

    async def transfer(
        self, *, image: bytes, reference: bytes, model: str | None = None
    ) -> bytes:
        """Return the image with the reference face transferred onto it."""


class RestorationClient(Protocol):
    """Interface for the external face restoration service."""

    async def restore(self, *, image: bytes, model: str, fidelity: float) -> bytes:
        """Return the image with facial detail restored."""


def retry_after_hint(error: Exception) -> float | None:
    """Extract a server-provided retry delay from an error message."""
    match = _RETRY_AFTER_RE.search(str(error))
    if match is None:
        return None
    return float(match.group(1)) + _RETRY_AFTER_PADDING_SECONDS


@dataclass
class PostProcessor:
    """Runs the enabled post-processing steps, falling back to each step's input."""

    identity_client: IdentityTransferClient
    restoration_client: RestorationClient
    max_retries: int = 3
    sleep: Sleeper = asyncio.sleep
    jitter: Jitter = random.uniform

    async def process(
        self, image: bytes, reference: bytes, settings: PostProcessSettings
    ) -> PostProcessResult:
        """Apply identity transfer then restoration; never raises."""
        outcomes: list[StepOutcome] = []
        current = image

        if settings.identity_transfer:

            async def transfer(data: bytes) -> bytes:
                return await self.identity_client.transfer(
                    image=data, reference=reference, model=settings.identity_model
                )

            current, outcome = await self._run_step(
                IDENTITY_TRANSFER_STEP, current, transfer
            )
            outcomes.append(outcome)
        else:
            outcomes.append(StepOutcome(IDENTITY_TRANSFER_STEP, OutcomeStatus.SKIPPED))

        if settings.restoration:

            async def restore(data: bytes) -> bytes:
                return await self.restoration_client.restore(
                    image=data,
                    model=settings.restoration_model,
                    fidelity=settings.restoration_fidelity,
                )

            current, outcome = await self._run_step(RESTORATION_STEP, current, restore)
            outcomes.append(outcome)
        else:
            outcomes.append(StepOutcome(RESTORATION_STEP, OutcomeStatus.SKIPPED))

        return PostProcessResult(image=current, outcomes=outcomes)

    async def _run_step(
        self,
        step: str,
        image: bytes,
        call: Callable[[bytes], Awaitable[bytes]],
    ) -> tuple[bytes, StepOutcome]:
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                result = await call(image)
            except Exception as exc:
                last_error = exc
            else:
                _logger.info("Post-process %s applied on attempt %s", step, attempt)
                return result, StepOutcome(
                    step, OutcomeStatus.APPLIED, attempts=attempt
                )

            _logger.warning(
                "Post-process %s attempt %s/%s failed: %s",
                step,
                attempt,
                self.max_retries,
                last_error,
            )
            if attempt < self.max_retries:
                delay = retry_after_hint(last_error)
                if delay is None:
                    delay = backoff_delay(attempt, self.jitter)
                await self.sleep(delay)

        error = PostProcessError(f"{step} failed: {last_error}")
        _logger.warning("%s; keeping the unprocessed image", error.message)
        return image, StepOutcome(
            step,
            OutcomeStatus.DEGRADED,
            attempts=self.max_retries,
            reason=error.message,
        )
