"""Story template models served by the content backend."""

from dataclasses import dataclass, field

DEFAULT_ASPECT_RATIO = "3:4"
ASPECT_RATIOS = {"3:4", "4:3", "1:1", "16:9"}


@dataclass(frozen=True)
class StyleProfile:
    """Detailed art direction shared by every page of a story."""

    technique: str
    color_palette: str
    line_work: str
    texture: str
    lighting: str
    detail_level: str
    atmosphere: str
    artistic_references: str | None = None


@dataclass(frozen=True)
class FacePosition:
    """Face placement as percentages from the left and top edges."""

    x: float = 50
    y: float = 50


@dataclass(frozen=True)
class PageMetadata:
    """Scene metadata for one page."""

    scene_description: str
    emotional_tone: str = "happy"
    face_position: FacePosition = field(default_factory=FacePosition)
    difficulty: str = "medium"


@dataclass(frozen=True)
class StoryPage:
    """One illustrated page of a story template."""

    page_number: int
    metadata: PageMetadata
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    prompt_template: str | None = None


@dataclass(frozen=True)
class PostProcessSettings:
    """Story-level switches for the optional post-processing pass."""

    identity_transfer: bool = False
    identity_model: str | None = None
    restoration: bool = False
    restoration_model: str = "codeformer"
    restoration_fidelity: float = 0.5


@dataclass(frozen=True)
class StorySettings:
    """Generation settings for a story."""

    max_regenerations: int = 3
    model: str | None = None
    default_aspect_ratio: str = DEFAULT_ASPECT_RATIO
    post_process: PostProcessSettings = field(default_factory=PostProcessSettings)


@dataclass(frozen=True)
class StoryTemplate:
    """A story template with its pages, art style and settings."""

    id: str
    title: str
    illustration_style: str
    pages: list[StoryPage]
    settings: StorySettings = field(default_factory=StorySettings)
    style_profile: StyleProfile | None = None
    prompt_template: str = ""

    @property
    def total_pages(self) -> int:
        """Number of pages in the template."""
        return len(self.pages)

    def get_page(self, page_number: int) -> StoryPage | None:
        """Return the page with the given 1-based number, if present."""
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None
