import asyncio
import threading

import pytest
from starlette.requests import ClientDisconnect

from app.errors import (
    FileIoError,
    InvalidFormatError,
    OverwriteError,
    ProbeError,
    ThumbnailError,
    UploadIncompleteError,
)
from app.models.video import Video, VideoStatus
from app.services.upload_pipeline import UploadPipeline, ensure_complete


async def body(*parts: bytes):
    for part in parts:
        yield part


async def aborted_body():
    yield b"first chunk"
    raise ClientDisconnect()


@pytest.fixture
def pipeline(db, storage, probe, thumbnails, ids):
    return UploadPipeline(db, storage, probe, thumbnails, ids)


@pytest.fixture
def video(pipeline, make_user):
    return pipeline.create_placeholder(make_user())


def _reload(db, video) -> Video:
    db.expire_all()
    return db.get(Video, video.id)


def test_placeholder_starts_empty(video):
    assert video.status == VideoStatus.EMPTY
    assert video.name == "Untitled"
    assert video.size_bytes == 0


@pytest.mark.asyncio
async def test_upload_reaches_complete_with_probed_metadata(pipeline, video, db, storage, probe, thumbnails):
    observed = [video.status]
    probe.on_call = lambda: observed.append(video.status)
    thumbnails.on_call = lambda: observed.append(video.status)

    await pipeline.upload(video, body(b"VIDEO", b"x" * 995))
    observed.append(video.status)

    saved = _reload(db, video)
    assert saved.status == VideoStatus.COMPLETE
    assert saved.mime_type == "video/mp4"
    assert saved.duration_secs == 100
    assert saved.size_bytes == 1000
    assert storage.video_path(video.id).read_bytes()[:5] == b"VIDEO"
    assert storage.thumbnail_path(video.id).is_file()
    assert observed == sorted(observed)
    assert observed == [VideoStatus.EMPTY, VideoStatus.UPLOADING, VideoStatus.PROCESSING, VideoStatus.COMPLETE]


@pytest.mark.asyncio
async def test_complete_video_cannot_be_overwritten(pipeline, video, db, probe):
    await pipeline.upload(video, body(b"VIDEO"))
    with pytest.raises(OverwriteError):
        await pipeline.upload(video, body(b"VIDEO again"))
    assert len(probe.calls) == 1
    assert _reload(db, video).status == VideoStatus.COMPLETE


@pytest.mark.asyncio
async def test_corrupt_file_is_deleted_and_upload_can_be_retried(pipeline, video, db, storage):
    with pytest.raises(InvalidFormatError):
        await pipeline.upload(video, body(b"BAD data"))

    saved = _reload(db, video)
    assert saved.status == VideoStatus.UPLOADING
    assert not storage.video_path(video.id).exists()

    await pipeline.upload(saved, body(b"VIDEO fine"))
    assert _reload(db, video).status == VideoStatus.COMPLETE


@pytest.mark.asyncio
async def test_probe_tool_failure_is_server_error(pipeline, video, db, storage):
    with pytest.raises(ProbeError):
        await pipeline.upload(video, body(b"CRASH"))
    assert _reload(db, video).status == VideoStatus.UPLOADING
    assert not storage.video_path(video.id).exists()


@pytest.mark.asyncio
async def test_client_abort_removes_partial_file(pipeline, video, db, storage, probe):
    with pytest.raises(FileIoError):
        await pipeline.upload(video, aborted_body())
    assert _reload(db, video).status == VideoStatus.UPLOADING
    assert not storage.video_path(video.id).exists()
    assert probe.calls == []


@pytest.mark.asyncio
async def test_thumbnail_failure_leaves_processing(pipeline, video, db, storage, thumbnails):
    thumbnails.fail = True
    with pytest.raises(ThumbnailError):
        await pipeline.upload(video, body(b"VIDEO"))

    saved = _reload(db, video)
    assert saved.status == VideoStatus.PROCESSING
    assert saved.size_bytes == 5
    assert storage.video_path(video.id).exists()
    with pytest.raises(OverwriteError):
        await pipeline.upload(saved, body(b"VIDEO"))


def test_ensure_complete(video):
    with pytest.raises(UploadIncompleteError):
        ensure_complete(video)
    video.status = VideoStatus.COMPLETE.value
    ensure_complete(video)


def _part_files(storage, video) -> list:
    return list(storage.video_dir(video.id).glob("*.part"))


@pytest.mark.asyncio
async def test_failed_attempts_leave_no_part_files(pipeline, video, storage):
    with pytest.raises(InvalidFormatError):
        await pipeline.upload(video, body(b"BAD data"))
    with pytest.raises(FileIoError):
        await pipeline.upload(video, aborted_body())
    assert _part_files(storage, video) == []


@pytest.mark.asyncio
async def test_concurrent_upload_cannot_replace_completed_video(session_factory, storage, probe, thumbnails, ids, video):
    db_a, db_b = session_factory(), session_factory()
    try:
        first = UploadPipeline(db_a, storage, probe, thumbnails, ids)
        second = UploadPipeline(db_b, storage, probe, thumbnails, ids)
        streaming = asyncio.Event()
        first_done = asyncio.Event()

        async def slow_body():
            yield b"VIDEO-B"
            streaming.set()
            await first_done.wait()
            yield b"b" * 993

        # Second upload claims the row and starts streaming before the first one runs end to end
        pending = asyncio.create_task(second.upload(db_b.get(Video, video.id), slow_body()))
        await streaming.wait()
        await first.upload(db_a.get(Video, video.id), body(b"VIDEO-A", b"a" * 993))
        first_done.set()

        with pytest.raises(OverwriteError):
            await pending
    finally:
        db_a.close()
        db_b.close()

    db = session_factory()
    try:
        saved = db.get(Video, video.id)
        assert saved.status == VideoStatus.COMPLETE
        assert saved.size_bytes == 1000
    finally:
        db.close()
    assert storage.video_path(video.id).read_bytes() == b"VIDEO-A" + b"a" * 993
    assert _part_files(storage, video) == []


@pytest.mark.asyncio
async def test_upload_commits_off_the_event_loop(pipeline, video, db, monkeypatch):
    loop_thread = threading.get_ident()
    commit_threads = []
    real_commit = db.commit

    def commit():
        commit_threads.append(threading.get_ident())
        real_commit()

    monkeypatch.setattr(db, "commit", commit)
    await pipeline.upload(video, body(b"VIDEO"))

    assert len(commit_threads) == 3
    assert loop_thread not in commit_threads
