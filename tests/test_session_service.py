"""Tests for the session lifecycle."""

import asyncio
from datetime import timedelta

import pytest

from story_personalizer.domain.errors import (
    InvalidRequest,
    SessionNotFoundOrExpired,
    StoryNotFound,
)
from story_personalizer.domain.sessions import SessionStatus
from story_personalizer.services.sessions import (
    MAX_PHOTO_BYTES,
    PhotoUpload,
    photo_warnings,
)
from tests.conftest import JPEG_BYTES, PNG_BYTES, Pipeline, encode_image, make_story


def test_create_session_starts_with_story_page_count(pipeline: Pipeline) -> None:
    pipeline.add_story(make_story(total_pages=4))

    session = asyncio.run(
        pipeline.session_service.create_session("forest-adventure")
    )

    assert session.status is SessionStatus.CREATED
    assert session.progress.total_pages == 4
    assert session.expires_at - session.created_at == timedelta(hours=24)
    assert pipeline.session_repository.get_session(session.id) == session


def test_create_session_rejects_unknown_story(pipeline: Pipeline) -> None:
    with pytest.raises(StoryNotFound):
        asyncio.run(pipeline.session_service.create_session("missing-story"))

    assert pipeline.session_repository.sessions == {}


def test_get_session_marks_expired_sessions(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())
    pipeline.clock.advance(hours=25)

    with pytest.raises(SessionNotFoundOrExpired):
        pipeline.session_service.get_session(session.id)

    stored = pipeline.session_repository.get_session(session.id)
    assert stored is not None
    assert stored.status is SessionStatus.EXPIRED


def test_get_session_reports_missing_session(pipeline: Pipeline) -> None:
    with pytest.raises(SessionNotFoundOrExpired) as exc_info:
        pipeline.session_service.get_session("unknown")

    assert exc_info.value.status_code == 404


def test_upload_photos_stores_photos_and_name(pipeline: Pipeline) -> None:
    pipeline.add_story(make_story())
    session = asyncio.run(
        pipeline.session_service.create_session("forest-adventure")
    )

    updated = pipeline.session_service.upload_photos(
        session.id,
        [PhotoUpload(JPEG_BYTES, "image/jpeg"), PhotoUpload(PNG_BYTES)],
        child_name="  Lucia ",
    )

    assert updated.status is SessionStatus.PHOTO_UPLOADED
    assert updated.child_name == "Lucia"
    assert [photo.mime_type for photo in updated.photos] == ["image/jpeg", "image/png"]
    assert pipeline.session_service.load_photos(updated) == [JPEG_BYTES, PNG_BYTES]


def test_reupload_replaces_previous_photos(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story(), photos=3)

    updated = pipeline.session_service.upload_photos(
        session.id, [PhotoUpload(PNG_BYTES)]
    )

    assert len(updated.photos) == 1
    stored = [
        ref for ref in pipeline.asset_repository.files if "/photos/" in ref
    ]
    assert stored == [updated.photos[0].ref]


def test_upload_photos_validates_count(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())

    with pytest.raises(InvalidRequest, match="No files uploaded"):
        pipeline.session_service.upload_photos(session.id, [])
    with pytest.raises(InvalidRequest, match="Maximum 3 photos allowed"):
        pipeline.session_service.upload_photos(
            session.id, [PhotoUpload(JPEG_BYTES)] * 4
        )


def test_upload_photos_validates_type_and_size(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())

    with pytest.raises(InvalidRequest, match="Invalid file type"):
        pipeline.session_service.upload_photos(
            session.id, [PhotoUpload(b"GIF89a", "image/gif")]
        )
    with pytest.raises(InvalidRequest, match="File too large"):
        pipeline.session_service.upload_photos(
            session.id, [PhotoUpload(JPEG_BYTES + b"0" * MAX_PHOTO_BYTES)]
        )


def test_upload_rejects_undecodable_image(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())
    corrupt = b"\x89PNG\r\n\x1a\n" + b"not-a-real-png"
    truncated = JPEG_BYTES[: len(JPEG_BYTES) // 2]

    for data in (corrupt, truncated):
        with pytest.raises(InvalidRequest, match="could not be decoded"):
            pipeline.session_service.upload_photos(session.id, [PhotoUpload(data)])

    stored = pipeline.session_repository.get_session(session.id)
    assert stored is not None
    assert [photo.mime_type for photo in stored.photos] == ["image/jpeg"]


def test_upload_records_dimensions_without_warnings(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())

    updated = pipeline.session_service.upload_photos(
        session.id, [PhotoUpload(encode_image("PNG", "green", (120, 80)))]
    )

    photo = updated.photos[0]
    assert (photo.width, photo.height) == (120, 80)
    assert photo_warnings(updated.photos) == []


def test_photo_warnings_flag_large_and_dense_photos(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())
    wide = encode_image("PNG", "white", (4100, 10))
    dense = encode_image("JPEG", "white", dpi=(300, 300))

    updated = pipeline.session_service.upload_photos(
        session.id, [PhotoUpload(wide), PhotoUpload(dense)]
    )

    assert updated.photos[1].dpi == 300
    assert photo_warnings(updated.photos) == [
        "Photo 1 has very large dimensions (4100x10). "
        "This may cause generation issues.",
        "Photo 2 has high resolution (300 DPI). "
        "This may cause generation issues. Consider using a standard photo.",
    ]


def test_update_progress_completes_when_all_pages_selected(
    pipeline: Pipeline,
) -> None:
    session = pipeline.start_session(make_story(total_pages=2))

    partial = pipeline.session_service.update_progress(session.id, 1)
    assert partial.status is SessionStatus.GENERATING
    assert partial.progress.percentage == 50

    done = pipeline.session_service.update_progress(session.id, 2)
    assert done.status is SessionStatus.COMPLETED
    assert done.progress.completed_at == pipeline.clock.now

    still_done = pipeline.session_service.update_progress(session.id, 1)
    assert still_done.status is SessionStatus.COMPLETED


def test_record_error_appends_to_log(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())

    pipeline.session_service.record_error(session.id, 2, 1, "timeout")

    stored = pipeline.session_service.get_session(session.id)
    assert [(entry.page_number, entry.error) for entry in stored.progress.errors] == [
        (2, "timeout")
    ]
    assert stored.status is SessionStatus.PHOTO_UPLOADED


def test_delete_session_purges_everything(pipeline: Pipeline) -> None:
    session = pipeline.start_session(make_story())
    asyncio.run(pipeline.page_generation_service.generate_page(session.id, 1))

    pipeline.session_service.delete_session(session.id)

    assert pipeline.session_repository.sessions == {}
    assert pipeline.version_repository.versions == {}
    assert pipeline.version_repository.selections == {}
    assert pipeline.asset_repository.files == {}
    assert pipeline.cache.get(session.id) is None
    with pytest.raises(SessionNotFoundOrExpired):
        pipeline.session_service.delete_session(session.id)


def test_clean_expired_sessions_removes_only_expired(pipeline: Pipeline) -> None:
    old = pipeline.start_session(make_story())
    pipeline.clock.advance(hours=20)
    fresh = pipeline.start_session(make_story())
    pipeline.clock.advance(hours=5)

    removed = pipeline.session_service.clean_expired_sessions()

    assert removed == 1
    assert old.id not in pipeline.session_repository.sessions
    assert fresh.id in pipeline.session_repository.sessions
