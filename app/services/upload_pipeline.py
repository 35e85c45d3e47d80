"""
Video ingestion: EMPTY -> UPLOADING -> PROCESSING -> COMPLETE.

- A COMPLETE video is never overwritten. Every transition is a conditional
  UPDATE on the current database row, so a concurrent upload that loses the
  race gets OverwriteError instead of replacing a finished file.
- Each transition is committed as soon as it happens; whatever status the
  upload reached is what the database holds on every exit path.
- Bytes go to a per-attempt part file; it is renamed over the video file only
  after a successful probe and the PROCESSING claim. Failures up to that point
  delete the part file and leave the video at UPLOADING, so the client can
  simply upload again.
- A thumbnail failure keeps the file and leaves the video at PROCESSING.
- Database and file work run in the default executor, never on the event loop.
"""
import logging
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from app.errors import (
    DatabaseError,
    FileIoError,
    InvalidFormatError,
    OverwriteError,
    ProbeError,
    ThumbnailError,
    UploadIncompleteError,
)
from app.ids import IdGenerator
from app.models.user import User
from app.models.video import Video, VideoStatus
from app.services.media import MediaProbe, MediaToolError, ProbeResult, ThumbnailGenerator, UnsupportedFormatError
from app.services.video_storage import VideoStorage, run_blocking

logger = logging.getLogger(__name__)


def ensure_complete(video: Video) -> None:
    """Guard for read-side consumers (stream, info, thumbnail)."""
    if video.status < VideoStatus.COMPLETE:
        raise UploadIncompleteError()


class UploadPipeline:
    def __init__(
        self,
        db: Session,
        storage: VideoStorage,
        probe: MediaProbe,
        thumbnails: ThumbnailGenerator,
        ids: IdGenerator,
    ):
        self._db = db
        self._storage = storage
        self._probe = probe
        self._thumbnails = thumbnails
        self._ids = ids

    def create_placeholder(self, creator: User) -> Video:
        video = Video(
            id=self._ids.new_id(),
            creator_id=creator.id,
            name="Untitled",
            description="",
            status=VideoStatus.EMPTY.value,
        )
        self._db.add(video)
        self._commit(video)
        logger.info("Created placeholder video %s for user %s", video.id, creator.id)
        return video

    def _commit(self, video: Video) -> None:
        try:
            self._db.commit()
            self._db.refresh(video)
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.exception("Could not persist status for video %s", video.id)
            raise DatabaseError() from e

    def _transition(self, video: Video, allowed: tuple[VideoStatus, ...], to: VideoStatus, **values) -> bool:
        """UPDATE the row to `to` only if its current status is in `allowed`. Leaves the transaction open."""
        result = self._db.execute(
            update(Video)
            .where(Video.id == video.id, Video.status.in_([s.value for s in allowed]))
            .values(status=to.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    # ---------- Blocking steps (run in the executor) ----------

    def _claim(self, video: Video) -> None:
        try:
            claimed = self._transition(video, (VideoStatus.EMPTY, VideoStatus.UPLOADING), VideoStatus.UPLOADING)
        except SQLAlchemyError as e:
            self._db.rollback()
            raise DatabaseError() from e
        self._commit(video)
        if not claimed:
            raise OverwriteError()

    def _promote(self, video: Video, part: Path, probe: ProbeResult, size: int) -> None:
        """Claim PROCESSING and move the part file into place in one transaction."""
        try:
            claimed = self._transition(
                video,
                (VideoStatus.EMPTY, VideoStatus.UPLOADING),
                VideoStatus.PROCESSING,
                mime_type=probe.mime_type,
                duration_secs=probe.duration_secs,
                size_bytes=size,
            )
            if not claimed:
                self._db.rollback()
                logger.warning("Video %s was finished by another upload; discarding this attempt", video.id)
                raise OverwriteError()
            # Row stays locked until commit, so no other attempt can promote in between
            self._storage.promote_upload(part, video.id)
        except OSError as e:
            self._db.rollback()
            raise FileIoError() from e
        except SQLAlchemyError as e:
            self._db.rollback()
            raise DatabaseError() from e
        self._commit(video)

    def _finish(self, video: Video) -> None:
        try:
            self._transition(video, (VideoStatus.PROCESSING,), VideoStatus.COMPLETE)
        except SQLAlchemyError as e:
            self._db.rollback()
            raise DatabaseError() from e
        self._commit(video)

    # ---------- Upload ----------

    async def upload(self, video: Video, chunks: AsyncIterator[bytes]) -> None:
        await run_blocking(self._claim, video)

        part = await self._store(video, chunks)
        try:
            probe, size = await self._read_metadata(video, part)
            await run_blocking(self._promote, video, part, probe, size)
        except Exception:
            await run_blocking(self._storage.discard, part)
            raise
        except BaseException:
            self._storage.discard(part)
            raise

        await self._make_thumbnail(video)
        await run_blocking(self._finish, video)
        logger.info("Video %s upload complete", video.id)

    async def _store(self, video: Video, chunks: AsyncIterator[bytes]) -> Path:
        try:
            return await self._storage.write_upload(video.id, self._ids.new_id(), chunks)
        except ClientDisconnect as e:
            logger.warning("Client disconnected during upload of video %s", video.id)
            raise FileIoError("Upload was interrupted.") from e
        except OSError as e:
            raise FileIoError() from e

    async def _read_metadata(self, video: Video, part: Path) -> tuple[ProbeResult, int]:
        try:
            probe = await self._probe.probe(part)
        except UnsupportedFormatError as e:
            logger.info("Video %s rejected: %s", video.id, e)
            raise InvalidFormatError() from e
        except MediaToolError as e:
            raise ProbeError() from e

        try:
            size = await run_blocking(self._storage.file_size, part)
        except OSError as e:
            raise FileIoError() from e
        return probe, size

    async def _make_thumbnail(self, video: Video) -> None:
        try:
            await self._thumbnails.generate(self._storage.video_path(video.id))
        except (MediaToolError, OSError) as e:
            # TODO: no recovery path yet; the video stays at PROCESSING until an admin retry exists
            raise ThumbnailError() from e
