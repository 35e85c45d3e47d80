"""
Videos: placeholder creation, settings, raw upload, playback and view counting.
Streaming supports Range requests; every chunk actually delivered is added to the
caller's watch session so the still-watching poll can decide whether a view counts.
"""
import logging
import re
from pathlib import Path
from typing import Callable

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import FileResponse, Response, StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from app.auth import get_current_user, get_current_user_optional
from app.config import get_settings
from app.database import get_db, get_session_factory
from app.dependencies import get_storage, get_upload_pipeline, get_watch_engine
from app.errors import (
    AccessForbiddenError,
    DuplicateViewError,
    FileIoError,
    InvalidVideoIdError,
    ThresholdNotMetError,
    UserRequiredError,
    VideoNotFoundError,
    VideoNotOwnedError,
)
from app.ids import parse_id
from app.models.user import User
from app.models.video import Video, VideoStatus, Visibility
from app.schemas.user import UserInfo
from app.schemas.video import VideoCreatedInfo, VideoInfo, VideoUpdateInfo
from app.services.upload_pipeline import UploadPipeline, ensure_complete
from app.services.video_storage import VideoStorage
from app.services.watch_integrity import (
    DuplicateView,
    NotStreamedEnough,
    TimeNotPassed,
    ViewLedger,
    WatchIntegrityEngine,
    add_streamed_bytes,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/videos", tags=["videos"])


# ---------- Path parameter guards ----------


def get_video(video_id: str, db: Session = Depends(get_db)) -> Video:
    parsed = parse_id(video_id)
    if parsed is None:
        raise InvalidVideoIdError()
    video = db.query(Video).filter(Video.id == parsed).first()
    if not video:
        raise VideoNotFoundError()
    return video


def get_visible_video(
    video: Video = Depends(get_video),
    user: User | None = Depends(get_current_user_optional),
) -> Video:
    """Private videos are only visible to their creator."""
    if video.visibility == Visibility.PRIVATE:
        if user is None:
            raise UserRequiredError()
        if not video.is_creator(user):
            raise AccessForbiddenError()
    return video


def get_owned_video(
    video: Video = Depends(get_video),
    user: User = Depends(get_current_user),
) -> Video:
    if not video.is_creator(user):
        raise VideoNotOwnedError()
    return video


def _video_info(video: Video, views: int) -> VideoInfo:
    return VideoInfo(
        id=str(video.id),
        creator=UserInfo(id=str(video.creator.id), username=video.creator.username),
        duration_secs=video.duration_secs,
        name=video.name,
        description=video.description,
        visibility=video.visibility,
        views=views,
    )


# ---------- Range streaming ----------


# Single byte range only; anything else is ignored and the full file served
_RANGE_RE = re.compile(r"bytes=(?:(\d+)-(\d*)|-(\d+))")


def _parse_range(range_header: str, file_size: int) -> tuple[int, int] | None:
    """Return (start, end) inclusive for a header matching _RANGE_RE, or None if unsatisfiable."""
    m = _RANGE_RE.fullmatch(range_header.strip())
    start_s, end_s, suffix_s = m.groups()
    if file_size == 0:
        return None
    if suffix_s is not None:
        # Suffix range: last N bytes
        length = int(suffix_s)
        if length == 0:
            return None
        return max(0, file_size - length), file_size - 1
    start = int(start_s)
    end = int(end_s) if end_s else file_size - 1
    if start > end or start >= file_size:
        return None
    return start, min(end, file_size - 1)


def _stream_file_range(
    path: Path,
    request: Request,
    content_type: str,
    on_delivered: Callable[[int], None],
):
    """Handle Range request for video streaming. Returns Response with 206 or 200 (416 if unsatisfiable)."""
    chunk_size = get_settings().upload_chunk_size
    file_size = path.stat().st_size
    range_header = request.headers.get("range")
    if range_header and not _RANGE_RE.fullmatch(range_header.strip()):
        range_header = None

    if range_header:
        parsed = _parse_range(range_header, file_size)
        if parsed is None:
            return Response(status_code=416, headers={"Content-Range": f"bytes */{file_size}"})
        start, end = parsed
        status_code = 206
        headers = {"Content-Range": f"bytes {start}-{end}/{file_size}"}
    else:
        start, end = 0, file_size - 1
        status_code = 200
        headers = {}
    length = end - start + 1

    def range_stream():
        with open(path, "rb") as f:
            f.seek(start)
            remaining = length
            while remaining > 0:
                data = f.read(min(chunk_size, remaining))
                if not data:
                    break
                remaining -= len(data)
                yield data
                on_delivered(len(data))

    return StreamingResponse(
        range_stream(),
        status_code=status_code,
        media_type=content_type,
        headers={
            "Accept-Ranges": "bytes",
            "Content-Length": str(max(length, 0)),
            "Content-Disposition": "inline",
            **headers,
        },
    )


# ---------- Catalogue ----------


@router.post("", status_code=status.HTTP_201_CREATED, response_model=VideoCreatedInfo)
def create_video(
    user: User = Depends(get_current_user),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
):
    """Create an empty placeholder video; upload its content with PUT /{id}/stream."""
    video = pipeline.create_placeholder(user)
    return VideoCreatedInfo(
        id=str(video.id),
        name=video.name,
        description=video.description,
        visibility=video.visibility,
    )


@router.get("", response_model=list[VideoInfo])
def list_videos(db: Session = Depends(get_db)):
    """Public, fully uploaded videos, newest first."""
    videos = (
        db.query(Video)
        .filter(Video.visibility == Visibility.PUBLIC.value, Video.status == VideoStatus.COMPLETE.value)
        .order_by(Video.id.desc())
        .all()
    )
    views = ViewLedger(db).counts([v.id for v in videos])
    return [_video_info(v, views.get(v.id, 0)) for v in videos]


@router.get("/{video_id}", response_model=VideoInfo)
def get_video_info(
    video: Video = Depends(get_visible_video),
    db: Session = Depends(get_db),
):
    ensure_complete(video)
    return _video_info(video, ViewLedger(db).count(video.id))


@router.put("/{video_id}/settings", status_code=status.HTTP_204_NO_CONTENT)
def update_video(
    update: VideoUpdateInfo,
    video: Video = Depends(get_owned_video),
    db: Session = Depends(get_db),
):
    """Owner: change name, description and visibility. Never touches status or media metadata."""
    video.name = update.name
    video.description = update.description
    video.visibility = update.visibility.value
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Upload ----------


@router.put("/{video_id}/stream", status_code=status.HTTP_204_NO_CONTENT)
async def upload_video(
    request: Request,
    video: Video = Depends(get_owned_video),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
):
    """Owner: raw request body is the media file. Allowed while the video is EMPTY or UPLOADING."""
    await pipeline.upload(video, request.stream())
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Playback ----------


@router.get("/{video_id}/thumbnail")
def get_video_thumbnail(
    video: Video = Depends(get_visible_video),
    storage: VideoStorage = Depends(get_storage),
):
    ensure_complete(video)
    path = storage.thumbnail_path(video.id)
    if not path.is_file():
        logger.error("Thumbnail missing on disk for complete video %s", video.id)
        raise FileIoError()
    return FileResponse(path, media_type="image/jpeg", headers={"Content-Disposition": "inline"})


@router.get("/{video_id}/stream")
def stream_video(
    request: Request,
    video: Video = Depends(get_visible_video),
    user: User = Depends(get_current_user),
    engine: WatchIntegrityEngine = Depends(get_watch_engine),
    storage: VideoStorage = Depends(get_storage),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Stream the video (Range supported). Starts or resumes the caller's watch session;
    bytes delivered count towards the view threshold.
    """
    ensure_complete(video)
    path = storage.video_path(video.id)
    if not path.is_file():
        logger.error("Media missing on disk for complete video %s", video.id)
        raise FileIoError()

    watch, _ = engine.get_or_start(user, video)
    user_id, view_id = watch.user_id, watch.view_id

    def on_delivered(n: int) -> None:
        with session_factory() as db:
            add_streamed_bytes(db, user_id, view_id, n)

    return _stream_file_range(path, request, video.mime_type or "application/octet-stream", on_delivered)


@router.get("/{video_id}/required-watch-time")
def get_required_watch_time_ms(
    video: Video = Depends(get_visible_video),
    user: User = Depends(get_current_user),
    engine: WatchIntegrityEngine = Depends(get_watch_engine),
) -> int:
    """Milliseconds the caller still has to watch, or -1 if the view is already counted."""
    ensure_complete(video)
    return engine.required_watch_time_ms(user, video)


@router.post("/{video_id}/still-watching", status_code=status.HTTP_204_NO_CONTENT)
def still_watching(
    video: Video = Depends(get_visible_video),
    user: User = Depends(get_current_user),
    engine: WatchIntegrityEngine = Depends(get_watch_engine),
):
    """Poll from the player. Counts the view once the session crosses the threshold."""
    ensure_complete(video)
    result = engine.try_register_view(user, video)
    if isinstance(result, DuplicateView):
        raise DuplicateViewError()
    if isinstance(result, TimeNotPassed):
        raise ThresholdNotMetError(
            f"You need to watch another {result.remaining_time_ms}ms.",
            remaining_time_ms=result.remaining_time_ms,
        )
    if isinstance(result, NotStreamedEnough):
        raise ThresholdNotMetError(
            f"You need to stream another {result.remaining_bytes} bytes.",
            remaining_bytes=result.remaining_bytes,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
