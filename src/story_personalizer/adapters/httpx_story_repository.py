"""Story templates read from the content management backend."""

import logging
from dataclasses import dataclass

import httpx

from story_personalizer.domain.errors import StoryNotFound
from story_personalizer.domain.story import (
    DEFAULT_ASPECT_RATIO,
    FacePosition,
    PageMetadata,
    PostProcessSettings,
    StoryPage,
    StorySettings,
    StoryTemplate,
    StyleProfile,
)
from story_personalizer.services.cache import TtlCache
from story_personalizer.services.stories import StoryRepository

_logger = logging.getLogger(__name__)

_ASPECT_RATIOS = {
    "ratio_3_4": "3:4",
    "ratio_4_3": "4:3",
    "ratio_1_1": "1:1",
    "ratio_16_9": "16:9",
}


@dataclass
class HttpxStoryRepository(StoryRepository):
    """HTTPX-backed story repository with a short-lived template cache."""

    base_url: str
    http_client: httpx.AsyncClient
    cache: TtlCache

    @classmethod
    def create(cls, base_url: str, ttl_seconds: int = 300) -> "HttpxStoryRepository":
        """Create a story repository with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            cache=TtlCache(ttl_seconds=ttl_seconds),
        )

    async def get_story(self, story_id: str) -> StoryTemplate:
        """Fetch a story template by slug."""
        cached = self.cache.get(story_id)
        if isinstance(cached, StoryTemplate):
            return cached

        response = await self.http_client.get(
            f"{self.base_url}/api/stories",
            params={"filters[slug][$eq]": story_id, "populate": "*"},
            timeout=15,
        )
        response.raise_for_status()
        rows = response.json().get("data") or []
        if not rows:
            raise StoryNotFound(f"Story {story_id} not found")

        story = parse_story(rows[0])
        self.cache.set(story_id, story)
        _logger.info("Loaded story %s with %s page(s)", story.id, story.total_pages)
        return story

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def parse_story(row: dict[str, object]) -> StoryTemplate:
    """Map a CMS story entry to a template, applying defaults."""
    settings = _dict(row.get("settings"))
    default_ratio = convert_aspect_ratio(settings.get("defaultAspectRatio"))
    pages = sorted(
        (_parse_page(_dict(page), default_ratio) for page in _list(row.get("pages"))),
        key=lambda page: page.page_number,
    )
    return StoryTemplate(
        id=str(row.get("slug") or row.get("id")),
        title=str(row.get("title_en") or row.get("title_es") or row.get("title") or ""),
        illustration_style=str(row.get("illustrationStyle") or ""),
        pages=pages,
        settings=StorySettings(
            max_regenerations=int(settings.get("maxRegenerations") or 3),
            model=_optional_str(settings.get("geminiModel")),
            default_aspect_ratio=default_ratio,
            post_process=_parse_post_process(_dict(settings.get("postProcess"))),
        ),
        style_profile=_parse_style_profile(row.get("styleProfile")),
        prompt_template=str(row.get("promptTemplate") or ""),
    )


def convert_aspect_ratio(value: object, default: str = DEFAULT_ASPECT_RATIO) -> str:
    """Translate CMS ratio tokens such as ratio_3_4 into 3:4."""
    if isinstance(value, str):
        if value in _ASPECT_RATIOS:
            return _ASPECT_RATIOS[value]
        if value in _ASPECT_RATIOS.values():
            return value
    return default


def _parse_page(page: dict[str, object], default_ratio: str) -> StoryPage:
    metadata = _dict(page.get("metadata"))
    position = _dict(metadata.get("facePosition"))
    return StoryPage(
        page_number=int(page.get("pageNumber") or 0),
        metadata=PageMetadata(
            scene_description=str(metadata.get("sceneDescription") or ""),
            emotional_tone=str(metadata.get("emotionalTone") or "happy"),
            face_position=FacePosition(
                x=float(position.get("x", 50)), y=float(position.get("y", 50))
            ),
            difficulty=str(metadata.get("difficulty") or "medium"),
        ),
        aspect_ratio=convert_aspect_ratio(page.get("aspectRatio"), default_ratio),
        prompt_template=_optional_str(page.get("prompt")),
    )


def _parse_style_profile(raw: object) -> StyleProfile | None:
    profile = _dict(raw)
    if not profile:
        return None
    return StyleProfile(
        technique=str(profile.get("technique") or ""),
        color_palette=str(profile.get("colorPalette") or ""),
        line_work=str(profile.get("lineWork") or ""),
        texture=str(profile.get("texture") or ""),
        lighting=str(profile.get("lighting") or ""),
        detail_level=str(profile.get("detailLevel") or ""),
        atmosphere=str(profile.get("atmosphere") or ""),
        artistic_references=_optional_str(profile.get("artisticReferences")),
    )


def _parse_post_process(raw: dict[str, object]) -> PostProcessSettings:
    return PostProcessSettings(
        identity_transfer=bool(raw.get("faceSwap", False)),
        identity_model=_optional_str(raw.get("faceSwapModel")),
        restoration=bool(raw.get("faceRestore", False)),
        restoration_model=str(raw.get("restoreModel") or "codeformer"),
        restoration_fidelity=float(raw.get("codeformerFidelity", 0.5)),
    )


def _dict(value: object) -> dict[str, object]:
    return value if isinstance(value, dict) else {}


def _list(value: object) -> list[object]:
    return value if isinstance(value, list) else []


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
