"""Inputs and typed outcomes of the image generation steps."""

from dataclasses import dataclass, field
from enum import StrEnum


class ReferenceRole(StrEnum):
    """What a reference image stands for in a generation request."""

    PHOTO = "photo"
    CHARACTER_SHEET = "character_sheet"
    PRIOR_PAGE = "prior_page"


@dataclass(frozen=True)
class ReferenceImage:
    """A reference image passed to the image model."""

    role: ReferenceRole
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class GenerationResult:
    """Image produced by the generation engine and how it was obtained."""

    image: bytes
    strategy: str
    attempts: int
    reference_count: int

    @property
    def degraded(self) -> bool:
        """Whether a reduced-reference strategy produced the image."""
        return self.strategy != "full"


class OutcomeStatus(StrEnum):
    """Result of an optional pipeline step."""

    APPLIED = "applied"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepOutcome:
    """Outcome of one optional step, kept so callers can see why quality dropped."""

    step: str
    status: OutcomeStatus
    attempts: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class PostProcessResult:
    """Final image after post-processing plus per-step outcomes."""

    image: bytes
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """Whether any enabled step fell back to its input image."""
        return any(item.status is OutcomeStatus.DEGRADED for item in self.outcomes)
