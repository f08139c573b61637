"""Page generation pipeline from identity artifacts to a stored version."""

import logging
from dataclasses import dataclass

from story_personalizer.domain.character import CharacterDescription
from story_personalizer.domain.errors import (
    AnalysisError,
    GenerationError,
    InvalidRequest,
    SheetGenerationError,
    VersionNotFound,
)
from story_personalizer.domain.generation import (
    GenerationResult,
    OutcomeStatus,
    PostProcessResult,
    ReferenceImage,
    ReferenceRole,
)
from story_personalizer.domain.sessions import SessionRecord
from story_personalizer.domain.story import StoryPage, StoryTemplate
from story_personalizer.domain.versions import PageVersion
from story_personalizer.services.character_analyzer import CharacterAnalyzer
from story_personalizer.services.character_sheet import CharacterSheetService
from story_personalizer.services.generation import GenerationEngine, GenerationRequest
from story_personalizer.services.images import detect_mime_type
from story_personalizer.services.postprocess import PostProcessor
from story_personalizer.services.prompts import (
    ConsistencyReferences,
    compose_page_prompt,
    generation_summary,
)
from story_personalizer.services.sessions import SessionService
from story_personalizer.services.stories import StoryRepository
from story_personalizer.services.versions import VersionService, remaining_regenerations

_logger = logging.getLogger(__name__)

ANCHOR_PAGE = 1


@dataclass(frozen=True)
class PageResult:
    """A stored page render with everything that shaped it."""

    session: SessionRecord
    version: PageVersion
    image: bytes
    generation: GenerationResult
    post_process: PostProcessResult
    remaining_regenerations: int


@dataclass
class PageGenerationService:
    """Turns a page request into a stored version of that page."""

    sessions: SessionService
    stories: StoryRepository
    versions: VersionService
    analyzer: CharacterAnalyzer
    sheets: CharacterSheetService
    engine: GenerationEngine
    post_processor: PostProcessor
    default_model: str

    async def generate_page(
        self,
        session_id: str,
        page_number: int,
        custom_instructions: str | None = None,
    ) -> PageResult:
        """Generate the next version of a page."""
        session, story, page = await self._resolve(session_id, page_number)
        return await self._render(session, story, page, custom_instructions)

    async def regenerate_page(
        self,
        session_id: str,
        page_number: int,
        custom_instructions: str | None = None,
    ) -> PageResult:
        """Generate another version of a page that already has one."""
        session, story, page = await self._resolve(session_id, page_number)
        if self.versions.count_versions(session.id, page_number) == 0:
            raise InvalidRequest(f"Page {page_number} has not been generated yet")
        return await self._render(session, story, page, custom_instructions)

    async def _resolve(
        self, session_id: str, page_number: int
    ) -> tuple[SessionRecord, StoryTemplate, StoryPage]:
        session = self.sessions.get_session(session_id)
        story = await self.stories.get_story(session.story_id)
        page = story.get_page(page_number)
        if page is None:
            raise InvalidRequest(
                f"Page {page_number} does not exist in story {story.id}"
            )
        if not session.has_photos:
            raise InvalidRequest("Upload a reference photo before generating pages")
        return session, story, page

    async def _render(
        self,
        session: SessionRecord,
        story: StoryTemplate,
        page: StoryPage,
        custom_instructions: str | None,
    ) -> PageResult:
        max_regenerations = story.settings.max_regenerations
        count = self.versions.count_versions(session.id, page.page_number)
        self.versions.ensure_below_limit(
            session.id, page.page_number, count, max_regenerations
        )
        photos = self.sessions.load_photos(session)
        if not photos:
            raise InvalidRequest("Reference photos are missing for this session")

        session = self.sessions.mark_generating(session, page.page_number)
        model = story.settings.model or self.default_model
        description = await self._describe(session, photos, page.page_number)
        sheet = await self._character_sheet(
            session, story, photos, model, description, page.page_number
        )
        prior_page = self._prior_page(session.id, page.page_number)

        references = [_reference(ReferenceRole.PHOTO, photos[0])]
        if sheet is not None:
            references.append(_reference(ReferenceRole.CHARACTER_SHEET, sheet))
        if prior_page is not None:
            references.append(_reference(ReferenceRole.PRIOR_PAGE, prior_page))
        consistency = ConsistencyReferences(
            character_sheet=sheet is not None, prior_page=prior_page is not None
        )

        template = page.prompt_template or story.prompt_template
        prompt_args = {
            "style_profile": story.style_profile,
            "description": description,
            "custom_instructions": custom_instructions,
        }
        request = GenerationRequest(
            prompt=compose_page_prompt(
                template,
                page.metadata,
                story.illustration_style,
                references=consistency,
                **prompt_args,
            ),
            references=references,
            aspect_ratio=page.aspect_ratio,
            model=model,
            fallback_prompt=compose_page_prompt(
                template, page.metadata, story.illustration_style, **prompt_args
            ),
        )
        _logger.info(
            "Generating %s with %s reference(s)",
            generation_summary(
                page.page_number, page.metadata, story.illustration_style
            ),
            len(references),
        )
        try:
            generation = await self.engine.generate(request)
        except GenerationError as exc:
            self.sessions.record_error(
                session.id, page.page_number, count + 1, exc.message
            )
            raise

        post_process = await self.post_processor.process(
            generation.image, photos[0], story.settings.post_process
        )
        for outcome in post_process.outcomes:
            if outcome.status is OutcomeStatus.DEGRADED and outcome.reason:
                self.sessions.record_error(
                    session.id, page.page_number, outcome.attempts, outcome.reason
                )

        version = self.versions.create_version(
            session.id, page.page_number, post_process.image, max_regenerations
        )
        selected_pages = self.versions.count_selected_pages(
            session.id, story.total_pages
        )
        session = self.sessions.update_progress(session.id, selected_pages)
        return PageResult(
            session=session,
            version=version,
            image=post_process.image,
            generation=generation,
            post_process=post_process,
            remaining_regenerations=remaining_regenerations(
                version.version, max_regenerations
            ),
        )

    async def _describe(
        self, session: SessionRecord, photos: list[bytes], page_number: int
    ) -> CharacterDescription | None:
        if session.character_description is not None:
            self.analyzer.remember(session.id, session.character_description)
            return session.character_description
        try:
            description = await self.analyzer.analyze(session.id, photos)
        except AnalysisError as exc:
            _logger.warning(
                "Continuing without a character description for session %s: %s",
                session.id,
                exc.message,
            )
            self.sessions.record_error(session.id, page_number, 1, exc.message)
            return None
        self.sessions.store_description(session.id, description)
        return description

    async def _character_sheet(  # noqa: PLR0913
        self,
        session: SessionRecord,
        story: StoryTemplate,
        photos: list[bytes],
        model: str,
        description: CharacterDescription | None,
        page_number: int,
    ) -> bytes | None:
        try:
            return await self.sheets.ensure_sheet(
                session.id, story, photos, model, description
            )
        except SheetGenerationError as exc:
            _logger.warning(
                "Continuing without a character sheet for session %s: %s",
                session.id,
                exc.message,
            )
            self.sessions.record_error(session.id, page_number, 1, exc.message)
            return None

    def _prior_page(self, session_id: str, page_number: int) -> bytes | None:
        if page_number == ANCHOR_PAGE:
            return None
        try:
            return self.versions.get_image(session_id, ANCHOR_PAGE)
        except VersionNotFound:
            return None


def _reference(role: ReferenceRole, data: bytes) -> ReferenceImage:
    return ReferenceImage(
        role=role, data=data, mime_type=detect_mime_type(data) or "image/jpeg"
    )
