"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from story_personalizer.adapters.gemini_image_client import GeminiImageClient
from story_personalizer.adapters.httpx_story_repository import HttpxStoryRepository
from story_personalizer.adapters.openai_character_client import (
    OpenAICharacterClient,
)
from story_personalizer.adapters.replicate_face_client import ReplicateFaceClient
from story_personalizer.adapters.supabase_asset_repository import (
    SupabaseAssetRepository,
)
from story_personalizer.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from story_personalizer.adapters.supabase_version_repository import (
    SupabaseVersionRepository,
)
from story_personalizer.config import Settings
from story_personalizer.services.cache import InMemoryDescriptionCache
from story_personalizer.services.character_analyzer import CharacterAnalyzer
from story_personalizer.services.character_sheet import CharacterSheetService
from story_personalizer.services.generation import GenerationEngine, default_strategies
from story_personalizer.services.pipeline import PageGenerationService
from story_personalizer.services.postprocess import PostProcessor
from story_personalizer.services.sessions import SessionService
from story_personalizer.services.stories import StoryRepository
from story_personalizer.services.versions import VersionService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    story_repository: StoryRepository
    session_service: SessionService
    version_service: VersionService
    page_generation_service: PageGenerationService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    session_repository = SupabaseSessionRepository(supabase_client)
    version_repository = SupabaseVersionRepository(supabase_client)
    asset_repository = SupabaseAssetRepository(
        supabase_client, bucket=resolved_settings.supabase_bucket
    )
    story_repository = HttpxStoryRepository.create(
        resolved_settings.cms_base_url,
        ttl_seconds=resolved_settings.story_cache_ttl_seconds,
    )
    description_cache = InMemoryDescriptionCache.create(
        resolved_settings.description_cache_ttl
    )
    session_service = SessionService(
        repository=session_repository,
        stories=story_repository,
        versions=version_repository,
        assets=asset_repository,
        cache=description_cache,
        ttl_hours=resolved_settings.session_ttl_hours,
    )
    version_service = VersionService(
        repository=version_repository, assets=asset_repository
    )
    engine = GenerationEngine(
        client=GeminiImageClient.create(resolved_settings.gemini_api_key),
        strategies=default_strategies(
            max_retries=resolved_settings.generation_max_retries,
            fallback_max_retries=resolved_settings.fallback_max_retries,
        ),
    )
    analyzer = CharacterAnalyzer(
        client=OpenAICharacterClient.create(resolved_settings.openai_api_key),
        model=resolved_settings.openai_analysis_model,
        cache=description_cache,
    )
    face_client = ReplicateFaceClient.create(resolved_settings.replicate_api_token)
    post_processor = PostProcessor(
        identity_client=face_client,
        restoration_client=face_client,
        max_retries=resolved_settings.postprocess_max_retries,
    )
    page_generation_service = PageGenerationService(
        sessions=session_service,
        stories=story_repository,
        versions=version_service,
        analyzer=analyzer,
        sheets=CharacterSheetService(engine=engine, assets=asset_repository),
        engine=engine,
        post_processor=post_processor,
        default_model=resolved_settings.gemini_image_model,
    )

    async def close_resources() -> None:
        await story_repository.close()
        await face_client.close()

    return AppContainer(
        settings=resolved_settings,
        story_repository=story_repository,
        session_service=session_service,
        version_service=version_service,
        page_generation_service=page_generation_service,
        close_resources=close_resources,
    )
