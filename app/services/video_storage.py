"""
On-disk layout: <data_root>/videos/<video id>/video and .../thumbnail.
Each upload attempt is copied chunk by chunk into its own `video.<attempt>.part`
file and only renamed over `video` once the upload pipeline has claimed the
row; the whole payload is never held in memory.
"""
import asyncio
import functools
import logging
from pathlib import Path
from typing import AsyncIterator

from app.config import get_settings
from app.services.media import THUMBNAIL_FILENAME

logger = logging.getLogger(__name__)

VIDEO_FILENAME = "video"


async def run_blocking(fn, *args, **kwargs):
    """Run blocking file/database work in the default executor, off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


def default_data_root() -> Path:
    settings = get_settings()
    if settings.data_root:
        return Path(settings.data_root)
    return Path(__file__).resolve().parent.parent.parent / "data"


class VideoStorage:
    def __init__(self, root: Path):
        self.root = Path(root)

    def video_dir(self, video_id: int) -> Path:
        return self.root / "videos" / str(video_id)

    def video_path(self, video_id: int) -> Path:
        return self.video_dir(video_id) / VIDEO_FILENAME

    def thumbnail_path(self, video_id: int) -> Path:
        return self.video_dir(video_id) / THUMBNAIL_FILENAME

    def upload_path(self, video_id: int, attempt: int) -> Path:
        return self.video_dir(video_id) / f"{VIDEO_FILENAME}.{attempt}.part"

    async def write_upload(self, video_id: int, attempt: int, chunks: AsyncIterator[bytes]) -> Path:
        """
        Copy `chunks` into this attempt's part file and return its path.
        On any failure (including the client going away mid-upload) the part
        file is removed and the exception re-raised.
        """
        path = self.upload_path(video_id, attempt)
        await run_blocking(path.parent.mkdir, parents=True, exist_ok=True)
        written = 0
        try:
            f = await run_blocking(path.open, "wb")
            with f:
                async for chunk in chunks:
                    if chunk:
                        await run_blocking(f.write, chunk)
                        written += len(chunk)
        except Exception:
            await run_blocking(self.discard, path)
            raise
        except BaseException:
            # Cancelled: no awaiting from here
            self.discard(path)
            raise
        logger.info("Stored %d bytes for video %s (attempt %s)", written, video_id, attempt)
        return path

    def promote_upload(self, part: Path, video_id: int) -> Path:
        """Atomically replace the video file with a finished part file."""
        target = self.video_path(video_id)
        part.replace(target)
        return target

    def discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Could not delete upload file %s", path.name)

    def file_size(self, path: Path) -> int:
        return path.stat().st_size
