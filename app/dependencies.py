"""
Process-wide handles (id generator, storage, media pool) built once and handed to
routers through Depends, so tests can override any of them.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.ids import IdGenerator
from app.services.media import (
    FfmpegThumbnailGenerator,
    FfprobeMediaProbe,
    MediaProbe,
    MediaWorkerPool,
    ThumbnailGenerator,
)
from app.services.upload_pipeline import UploadPipeline
from app.services.video_storage import VideoStorage, default_data_root
from app.services.watch_integrity import WatchIntegrityEngine


@lru_cache
def get_id_generator() -> IdGenerator:
    return IdGenerator(node=get_settings().id_node)


@lru_cache
def get_media_pool() -> MediaWorkerPool:
    return MediaWorkerPool(max_workers=get_settings().media_workers)


def get_storage() -> VideoStorage:
    return VideoStorage(default_data_root())


def get_media_probe(pool: MediaWorkerPool = Depends(get_media_pool)) -> MediaProbe:
    settings = get_settings()
    return FfprobeMediaProbe(pool, binary=settings.ffprobe_binary, timeout=settings.media_tool_timeout_seconds)


def get_thumbnail_generator(pool: MediaWorkerPool = Depends(get_media_pool)) -> ThumbnailGenerator:
    settings = get_settings()
    return FfmpegThumbnailGenerator(
        pool,
        binary=settings.ffmpeg_binary,
        timeout=settings.media_tool_timeout_seconds,
        offset_seconds=settings.thumbnail_offset_seconds,
    )


def get_upload_pipeline(
    db: Session = Depends(get_db),
    storage: VideoStorage = Depends(get_storage),
    probe: MediaProbe = Depends(get_media_probe),
    thumbnails: ThumbnailGenerator = Depends(get_thumbnail_generator),
    ids: IdGenerator = Depends(get_id_generator),
) -> UploadPipeline:
    return UploadPipeline(db, storage, probe, thumbnails, ids)


def get_watch_engine(
    db: Session = Depends(get_db),
    ids: IdGenerator = Depends(get_id_generator),
) -> WatchIntegrityEngine:
    return WatchIntegrityEngine(db, ids, threshold=get_settings().watch_percentage_required)
