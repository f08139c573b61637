"""Shared test fixtures."""

import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from io import BytesIO
from uuid import uuid4

import pytest
from PIL import Image

from story_personalizer.config import Settings
from story_personalizer.containers import AppContainer
from story_personalizer.domain.character import REQUIRED_FIELDS
from story_personalizer.domain.errors import StoryNotFound
from story_personalizer.domain.generation import ReferenceImage
from story_personalizer.domain.sessions import (
    SessionProgress,
    SessionRecord,
    SessionStatus,
)
from story_personalizer.domain.story import (
    PageMetadata,
    PostProcessSettings,
    StoryPage,
    StorySettings,
    StoryTemplate,
    StyleProfile,
)
from story_personalizer.domain.versions import PageSelection, PageVersion
from story_personalizer.services.assets import AssetRepository
from story_personalizer.services.cache import InMemoryDescriptionCache
from story_personalizer.services.character_analyzer import (
    CharacterAnalysisClient,
    CharacterAnalyzer,
)
from story_personalizer.services.character_sheet import CharacterSheetService
from story_personalizer.services.generation import (
    GenerationEngine,
    ImageGenerationClient,
)
from story_personalizer.services.pipeline import PageGenerationService
from story_personalizer.services.postprocess import (
    IdentityTransferClient,
    PostProcessor,
    RestorationClient,
)
from story_personalizer.services.sessions import (
    PhotoUpload,
    SessionRepository,
    SessionService,
)
from story_personalizer.services.stories import StoryRepository
from story_personalizer.services.versions import VersionRepository, VersionService


def encode_image(
    fmt: str, color: str, size: tuple[int, int] = (8, 8), **params: object
) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt, **params)
    return buffer.getvalue()


PNG_BYTES = encode_image("PNG", "white")
JPEG_BYTES = encode_image("JPEG", "orange")
SHEET_BYTES = encode_image("PNG", "navy")


def description_payload(**overrides: str) -> dict[str, str]:
    """A complete character description as the model returns it."""
    payload = {name: f"{name} value" for name in REQUIRED_FIELDS}
    payload["ageRange"] = "4-5 years old"
    payload["fullDescription"] = "A cheerful child with curly chestnut hair."
    payload.update(overrides)
    return payload


def make_story(  # noqa: PLR0913
    story_id: str = "forest-adventure",
    total_pages: int = 2,
    max_regenerations: int = 3,
    post_process: PostProcessSettings | None = None,
    style_profile: StyleProfile | None = None,
    prompt_template: str = "",
) -> StoryTemplate:
    """Build a story template with numbered pages."""
    return StoryTemplate(
        id=story_id,
        title="Forest Adventure",
        illustration_style="watercolor",
        pages=[
            StoryPage(
                page_number=number,
                metadata=PageMetadata(scene_description=f"Scene {number}"),
            )
            for number in range(1, total_pages + 1)
        ],
        settings=StorySettings(
            max_regenerations=max_regenerations,
            post_process=post_process or PostProcessSettings(),
        ),
        style_profile=style_profile,
        prompt_template=prompt_template,
    )


@dataclass
class FakeClock:
    """Manually advanced clock."""

    now: datetime = field(
        default_factory=lambda: datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class RecordingSleeper:
    """Async sleep replacement that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def no_jitter(_low: float, _high: float) -> float:
    return 0.0


@dataclass
class InMemorySessionRepository(SessionRepository):
    """In-memory session repository for tests."""

    sessions: dict[str, SessionRecord] = field(default_factory=dict)

    def create_session(self, session: SessionRecord) -> SessionRecord:
        self.sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> SessionRecord | None:
        return self.sessions.get(session_id)

    def save_session(self, session: SessionRecord) -> None:
        self.sessions[session.id] = session

    def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def list_expired_session_ids(self, now: datetime) -> list[str]:
        return [
            session.id for session in self.sessions.values() if session.is_expired(now)
        ]


@dataclass
class InMemoryVersionRepository(VersionRepository):
    """In-memory version repository with compare-and-swap inserts."""

    versions: dict[tuple[str, int], list[PageVersion]] = field(default_factory=dict)
    selections: dict[tuple[str, int], PageSelection] = field(default_factory=dict)
    rejected_inserts: int = 0

    def count_versions(self, session_id: str, page_number: int) -> int:
        return len(self.versions.get((session_id, page_number), []))

    def list_versions(self, session_id: str, page_number: int) -> list[PageVersion]:
        return list(self.versions.get((session_id, page_number), []))

    def get_version(
        self, session_id: str, page_number: int, version: int
    ) -> PageVersion | None:
        for record in self.versions.get((session_id, page_number), []):
            if record.version == version:
                return record
        return None

    def try_create_version(self, version: PageVersion, expected_count: int) -> bool:
        page = self.versions.setdefault((version.session_id, version.page_number), [])
        if len(page) != expected_count or version.version != expected_count + 1:
            self.rejected_inserts += 1
            return False
        page.append(version)
        return True

    def get_selection(self, session_id: str, page_number: int) -> PageSelection:
        return self.selections.get((session_id, page_number), PageSelection())

    def list_selections(self, session_id: str) -> dict[int, PageSelection]:
        return {
            page: selection
            for (owner, page), selection in self.selections.items()
            if owner == session_id
        }

    def set_selected(self, session_id: str, page_number: int, version: int) -> None:
        current = self.get_selection(session_id, page_number)
        self.selections[(session_id, page_number)] = replace(
            current, selected_version=version
        )

    def set_favorite(
        self, session_id: str, page_number: int, version: int | None
    ) -> None:
        current = self.get_selection(session_id, page_number)
        self.selections[(session_id, page_number)] = replace(
            current, favorite_version=version
        )

    def delete_session(self, session_id: str) -> None:
        for key in [key for key in self.versions if key[0] == session_id]:
            del self.versions[key]
        for key in [key for key in self.selections if key[0] == session_id]:
            del self.selections[key]


@dataclass
class InMemoryAssetRepository(AssetRepository):
    """In-memory asset storage for tests."""

    files: dict[str, bytes] = field(default_factory=dict)

    def save_photo(
        self, session_id: str, index: int, data: bytes, mime_type: str
    ) -> str:
        ref = f"{session_id}/photos/photo-{index}"
        self.files[ref] = data
        return ref

    def save_page_image(self, session_id: str, page_number: int, data: bytes) -> str:
        ref = f"{session_id}/pages/{page_number}/{uuid4().hex}"
        self.files[ref] = data
        return ref

    def get_asset(self, ref: str) -> bytes | None:
        return self.files.get(ref)

    def delete_asset(self, ref: str) -> None:
        self.files.pop(ref, None)

    def has_character_sheet(self, session_id: str) -> bool:
        return f"{session_id}/pages/0/character-sheet" in self.files

    def get_character_sheet(self, session_id: str) -> bytes | None:
        return self.files.get(f"{session_id}/pages/0/character-sheet")

    def save_character_sheet(self, session_id: str, data: bytes) -> str:
        ref = f"{session_id}/pages/0/character-sheet"
        self.files[ref] = data
        return ref

    def delete_session_assets(self, session_id: str) -> None:
        for ref in [ref for ref in self.files if ref.startswith(f"{session_id}/")]:
            del self.files[ref]


@dataclass
class FakeStoryRepository(StoryRepository):
    """Story repository serving fixed templates."""

    stories: dict[str, StoryTemplate] = field(default_factory=dict)

    async def get_story(self, story_id: str) -> StoryTemplate:
        story = self.stories.get(story_id)
        if story is None:
            raise StoryNotFound(f"Story {story_id} not found")
        return story


@dataclass
class FakeAnalysisClient(CharacterAnalysisClient):
    """Vision client returning a fixed text answer."""

    answer: str = field(default_factory=lambda: json.dumps(description_payload()))
    error: Exception | None = None
    calls: int = 0
    image_counts: list[int] = field(default_factory=list)

    async def analyze(
        self,
        *,
        model: str,
        image_data_urls: list[str],
        schema: dict[str, object],
        prompt: str,
    ) -> str:
        self.calls += 1
        self.image_counts.append(len(image_data_urls))
        if self.error is not None:
            raise self.error
        return self.answer


@dataclass
class ImageCall:
    prompt: str
    images: list[ReferenceImage]
    aspect_ratio: str
    model: str


@dataclass
class FakeImageClient(ImageGenerationClient):
    """Image client replaying scripted outcomes, then returning the default image."""

    outcomes: list[bytes | Exception] = field(default_factory=list)
    image: bytes = PNG_BYTES
    always_fail: Exception | None = None
    calls: list[ImageCall] = field(default_factory=list)

    async def generate(
        self,
        *,
        prompt: str,
        images: list[ReferenceImage],
        aspect_ratio: str,
        model: str,
    ) -> bytes:
        self.calls.append(ImageCall(prompt, list(images), aspect_ratio, model))
        if self.always_fail is not None:
            raise self.always_fail
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self.image


@dataclass
class FakeIdentityClient(IdentityTransferClient):
    """Face-swap client that tags the image or fails."""

    error: Exception | None = None
    calls: int = 0

    async def transfer(
        self, *, image: bytes, reference: bytes, model: str | None = None
    ) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return image + b"+swapped"


@dataclass
class FakeRestorationClient(RestorationClient):
    """Restoration client that tags the image or fails."""

    error: Exception | None = None
    calls: int = 0
    fidelities: list[float] = field(default_factory=list)

    async def restore(self, *, image: bytes, model: str, fidelity: float) -> bytes:
        self.calls += 1
        self.fidelities.append(fidelity)
        if self.error is not None:
            raise self.error
        return image + b"+restored"


@dataclass
class Pipeline:
    """All pipeline collaborators wired over in-memory fakes."""

    clock: FakeClock
    sleeper: RecordingSleeper
    story_repository: FakeStoryRepository
    session_repository: InMemorySessionRepository
    version_repository: InMemoryVersionRepository
    asset_repository: InMemoryAssetRepository
    analysis_client: FakeAnalysisClient
    image_client: FakeImageClient
    identity_client: FakeIdentityClient
    restoration_client: FakeRestorationClient
    cache: InMemoryDescriptionCache
    session_service: SessionService
    version_service: VersionService
    page_generation_service: PageGenerationService

    def add_story(self, story: StoryTemplate) -> StoryTemplate:
        self.story_repository.stories[story.id] = story
        return story

    def start_session(self, story: StoryTemplate, photos: int = 1) -> SessionRecord:
        """Create a session for the story with uploaded photos."""
        self.add_story(story)
        now = self.clock()
        session = SessionRecord(
            id=str(uuid4()),
            story_id=story.id,
            created_at=now,
            expires_at=now + timedelta(hours=24),
            status=SessionStatus.CREATED,
            progress=SessionProgress(total_pages=story.total_pages),
        )
        self.session_repository.create_session(session)
        return self.session_service.upload_photos(
            session.id, [PhotoUpload(data=JPEG_BYTES) for _ in range(photos)]
        )


def build_pipeline() -> Pipeline:
    clock = FakeClock()
    sleeper = RecordingSleeper()
    story_repository = FakeStoryRepository()
    session_repository = InMemorySessionRepository()
    version_repository = InMemoryVersionRepository()
    asset_repository = InMemoryAssetRepository()
    analysis_client = FakeAnalysisClient()
    image_client = FakeImageClient()
    identity_client = FakeIdentityClient()
    restoration_client = FakeRestorationClient()
    cache = InMemoryDescriptionCache.create(ttl_seconds=3600)
    session_service = SessionService(
        repository=session_repository,
        stories=story_repository,
        versions=version_repository,
        assets=asset_repository,
        cache=cache,
        clock=clock,
    )
    version_service = VersionService(
        repository=version_repository, assets=asset_repository, clock=clock
    )
    engine = GenerationEngine(client=image_client, sleep=sleeper, jitter=no_jitter)
    page_generation_service = PageGenerationService(
        sessions=session_service,
        stories=story_repository,
        versions=version_service,
        analyzer=CharacterAnalyzer(
            client=analysis_client, model="vision-model", cache=cache
        ),
        sheets=CharacterSheetService(engine=engine, assets=asset_repository),
        engine=engine,
        post_processor=PostProcessor(
            identity_client=identity_client,
            restoration_client=restoration_client,
            sleep=sleeper,
            jitter=no_jitter,
        ),
        default_model="image-model",
    )
    return Pipeline(
        clock=clock,
        sleeper=sleeper,
        story_repository=story_repository,
        session_repository=session_repository,
        version_repository=version_repository,
        asset_repository=asset_repository,
        analysis_client=analysis_client,
        image_client=image_client,
        identity_client=identity_client,
        restoration_client=restoration_client,
        cache=cache,
        session_service=session_service,
        version_service=version_service,
        page_generation_service=page_generation_service,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
        cms_base_url="https://cms.example.com",
        gemini_api_key="gemini-key",
        openai_api_key="openai-key",
        replicate_api_token="replicate-token",
    )


@pytest.fixture
def pipeline() -> Pipeline:
    return build_pipeline()


@pytest.fixture
def container(settings: Settings, pipeline: Pipeline) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        story_repository=pipeline.story_repository,
        session_service=pipeline.session_service,
        version_service=pipeline.version_service,
        page_generation_service=pipeline.page_generation_service,
        close_resources=close_resources,
    )
