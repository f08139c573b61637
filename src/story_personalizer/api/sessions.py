"""Session API endpoints: lifecycle, generation and version navigation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, File, Form, Request, Response, UploadFile

from story_personalizer.api.models import (
    CreateSessionRequest,
    FavoriteRequest,
    GeneratePageRequest,
    SelectVersionRequest,
)
from story_personalizer.domain.errors import InvalidRequest
from story_personalizer.services.images import detect_mime_type, to_data_url
from story_personalizer.services.sessions import PhotoUpload, photo_warnings
from story_personalizer.services.versions import remaining_regenerations

if TYPE_CHECKING:
    from story_personalizer.containers import AppContainer
    from story_personalizer.domain.sessions import SessionRecord
    from story_personalizer.domain.versions import PageState
    from story_personalizer.services.pipeline import PageResult

router = APIRouter(prefix="/api/session", tags=["session"])


def _container(request: Request) -> AppContainer:
    return request.app.state.container


@router.post("/create")
async def create_session(
    body: CreateSessionRequest, request: Request
) -> dict[str, object]:
    """Start a personalization session for a story."""
    container = _container(request)
    session = await container.session_service.create_session(body.story_id)
    return {"success": True, "session": session_payload(session)}


@router.get("/{session_id}")
async def get_session(session_id: str, request: Request) -> dict[str, object]:
    """Return a live session."""
    session = _container(request).session_service.get_session(session_id)
    return {"session": session_payload(session)}


@router.delete("/{session_id}")
async def delete_session(session_id: str, request: Request) -> dict[str, object]:
    """Delete a session with everything generated for it."""
    _container(request).session_service.delete_session(session_id)
    return {"success": True}


@router.post("/{session_id}/upload-photo")
async def upload_photo(
    session_id: str,
    request: Request,
    photos: list[UploadFile] = File(...),
    child_name: str | None = Form(default=None, alias="childName"),
) -> dict[str, object]:
    """Store 1-3 reference photos and the child's display name."""
    uploads = [
        PhotoUpload(data=await photo.read(), content_type=photo.content_type)
        for photo in photos
    ]
    session = _container(request).session_service.upload_photos(
        session_id, uploads, child_name
    )
    return {
        "success": True,
        "photos": [
            {
                "ref": photo.ref,
                "mimeType": photo.mime_type,
                "size": photo.size,
                "width": photo.width,
                "height": photo.height,
            }
            for photo in session.photos
        ],
        "warnings": photo_warnings(session.photos),
        "childName": session.child_name,
        "status": session.status.value,
    }


@router.post("/{session_id}/generate")
async def generate_page(
    session_id: str, body: GeneratePageRequest, request: Request
) -> dict[str, object]:
    """Generate the next version of a page."""
    result = await _container(request).page_generation_service.generate_page(
        session_id, body.page_number, body.custom_instructions
    )
    return page_result_payload(result)


@router.post("/{session_id}/regenerate")
async def regenerate_page(
    session_id: str, body: GeneratePageRequest, request: Request
) -> dict[str, object]:
    """Generate another version of an already generated page."""
    result = await _container(request).page_generation_service.regenerate_page(
        session_id, body.page_number, body.custom_instructions
    )
    payload = page_result_payload(result)
    payload["newVersion"] = result.version.version
    payload["remaining"] = result.remaining_regenerations
    return payload


@router.post("/{session_id}/select-version")
async def select_version(
    session_id: str, body: SelectVersionRequest, request: Request
) -> dict[str, object]:
    """Make a version the page's selected version."""
    container = _container(request)
    session = container.session_service.get_session(session_id)
    _ensure_page(session, body.page_number)
    state = container.version_service.select_version(
        session.id, body.page_number, body.version
    )
    return {"success": True, **selection_payload(state)}


@router.post("/{session_id}/favorite")
async def set_favorite(
    session_id: str, body: FavoriteRequest, request: Request
) -> dict[str, object]:
    """Set or clear the page's favorite version."""
    container = _container(request)
    session = container.session_service.get_session(session_id)
    _ensure_page(session, body.page_number)
    state = container.version_service.set_favorite(
        session.id, body.page_number, body.version
    )
    return {"success": True, **selection_payload(state)}


@router.get("/{session_id}/state")
async def current_state(session_id: str, request: Request) -> dict[str, object]:
    """Return versions, selection and favorites for every page."""
    container = _container(request)
    session = container.session_service.get_session(session_id)
    story = await container.story_repository.get_story(session.story_id)
    max_regenerations = story.settings.max_regenerations
    pages = container.version_service.session_state(session.id, story.total_pages)
    return {
        "sessionId": session.id,
        "storyId": session.story_id,
        "status": session.status.value,
        "progress": progress_payload(session),
        "pages": [
            {
                **selection_payload(page),
                "versions": [version.version for version in page.versions],
                "versionCount": page.version_count,
                "remainingRegenerations": remaining_regenerations(
                    page.version_count, max_regenerations
                ),
            }
            for page in pages
        ],
    }


@router.get("/{session_id}/image/{page_number}")
async def page_image(
    session_id: str,
    page_number: int,
    request: Request,
    version: int | None = None,
) -> Response:
    """Return the image bytes of a version, defaulting to the displayed one."""
    container = _container(request)
    session = container.session_service.get_session(session_id)
    _ensure_page(session, page_number)
    image = container.version_service.get_image(session.id, page_number, version)
    return Response(
        content=image,
        media_type=detect_mime_type(image) or "image/png",
        headers={"Cache-Control": "private, max-age=3600"},
    )


def session_payload(session: SessionRecord) -> dict[str, object]:
    """Serialize a session for API responses."""
    return {
        "id": session.id,
        "storyId": session.story_id,
        "status": session.status.value,
        "createdAt": session.created_at.isoformat(),
        "expiresAt": session.expires_at.isoformat(),
        "childName": session.child_name,
        "photoCount": len(session.photos),
        "hasCharacterDescription": session.character_description is not None,
        "progress": progress_payload(session),
    }


def progress_payload(session: SessionRecord) -> dict[str, object]:
    """Serialize session progress with its error log."""
    progress = session.progress
    return {
        "current": progress.pages_generated,
        "total": progress.total_pages,
        "percentage": progress.percentage,
        "currentPage": progress.current_page,
        "errors": [
            {
                "pageNumber": entry.page_number,
                "attempt": entry.attempt,
                "error": entry.error,
                "timestamp": entry.timestamp.isoformat(),
            }
            for entry in progress.errors
        ],
    }


def selection_payload(state: PageState) -> dict[str, object]:
    """Serialize a page's selection flags."""
    return {
        "pageNumber": state.page_number,
        "selectedVersion": state.selected_version,
        "favoriteVersion": state.favorite_version,
        "effectiveVersion": state.effective_version,
    }


def page_result_payload(result: PageResult) -> dict[str, object]:
    """Serialize a generated page."""
    progress = progress_payload(result.session)
    return {
        "success": True,
        "pageNumber": result.version.page_number,
        "version": result.version.version,
        "imageUrl": to_data_url(result.image, default_mime="image/png"),
        "progress": {
            "current": progress["current"],
            "total": progress["total"],
            "percentage": progress["percentage"],
        },
        "status": result.session.status.value,
        "remainingRegenerations": result.remaining_regenerations,
        "strategy": result.generation.strategy,
        "degraded": result.generation.degraded or result.post_process.degraded,
        "postProcess": [
            {
                "step": outcome.step,
                "status": outcome.status.value,
                "attempts": outcome.attempts,
                "reason": outcome.reason,
            }
            for outcome in result.post_process.outcomes
        ],
    }


def _ensure_page(session: SessionRecord, page_number: int) -> None:
    if not 1 <= page_number <= session.progress.total_pages:
        raise InvalidRequest(f"Page {page_number} does not exist in this story")
