"""
FFprobe metadata and FFmpeg thumbnails for stored uploads.
Both tools run as subprocesses on a bounded thread pool so a burst of uploads
cannot spawn an unbounded number of ffmpeg processes.
"""
import asyncio
import json
import logging
import math
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

THUMBNAIL_FILENAME = "thumbnail"

# ffprobe format_name -> MIME type served on playback
SUPPORTED_FORMATS = {
    "mov,mp4,m4a,3gp,3g2,mj2": "video/mp4",
    "matroska,webm": "video/webm",
    "ogg": "video/ogg",
    "avi": "video/x-msvideo",
    "mpegts": "video/mp2t",
    "flv": "video/x-flv",
}


@dataclass(frozen=True)
class ProbeResult:
    mime_type: str
    duration_secs: int


class UnsupportedFormatError(Exception):
    """The file is not a video we can play back (corrupt, audio-only, unknown container)."""


class MediaToolError(Exception):
    """ffprobe/ffmpeg could not be run, crashed or timed out."""


class MediaProbe(Protocol):
    async def probe(self, path: Path) -> ProbeResult: ...


class ThumbnailGenerator(Protocol):
    async def generate(self, source: Path) -> Path: ...


class MediaWorkerPool:
    """Bounded executor for blocking media tool calls."""

    def __init__(self, max_workers: int):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="media")

    async def run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def _run_tool(cmd: list[str], timeout: int) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(cmd, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise MediaToolError(f"{cmd[0]} timed out after {timeout}s") from e
    except FileNotFoundError as e:
        raise MediaToolError(f"{cmd[0]} not found; install FFmpeg") from e
    except OSError as e:
        raise MediaToolError(f"{cmd[0]} could not be started: {e}") from e


def parse_probe_output(raw: str) -> ProbeResult:
    """Turn `ffprobe -print_format json -show_format -show_streams` output into a ProbeResult."""
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise UnsupportedFormatError("ffprobe output is not JSON") from e

    streams = data.get("streams") or []
    if not any(s.get("codec_type") == "video" for s in streams):
        raise UnsupportedFormatError("no video stream found")

    fmt = data.get("format") or {}
    mime_type = SUPPORTED_FORMATS.get(fmt.get("format_name", ""))
    if mime_type is None:
        raise UnsupportedFormatError(f"unsupported container {fmt.get('format_name')!r}")

    try:
        duration = float(fmt.get("duration", 0))
    except (TypeError, ValueError) as e:
        raise UnsupportedFormatError("invalid duration") from e
    if not math.isfinite(duration) or duration <= 0:
        raise UnsupportedFormatError("video has no duration")

    return ProbeResult(mime_type=mime_type, duration_secs=int(duration))


class FfprobeMediaProbe:
    def __init__(self, pool: MediaWorkerPool, binary: str = "ffprobe", timeout: int = 120):
        self._pool = pool
        self._binary = binary
        self._timeout = timeout

    def _probe_sync(self, path: Path) -> ProbeResult:
        cmd = [
            self._binary,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        result = _run_tool(cmd, self._timeout)
        if result.returncode != 0:
            # ffprobe exits non-zero when it cannot demux the file at all
            logger.info("ffprobe rejected %s: %s", path, result.stderr.decode(errors="replace").strip())
            raise UnsupportedFormatError("ffprobe could not read the file")
        probe = parse_probe_output(result.stdout.decode(errors="replace"))
        logger.info("Probed %s: %s, %ss", path, probe.mime_type, probe.duration_secs)
        return probe

    async def probe(self, path: Path) -> ProbeResult:
        return await self._pool.run(self._probe_sync, path)


class FfmpegThumbnailGenerator:
    def __init__(
        self,
        pool: MediaWorkerPool,
        binary: str = "ffmpeg",
        timeout: int = 120,
        offset_seconds: float = 1.0,
    ):
        self._pool = pool
        self._binary = binary
        self._timeout = timeout
        self._offset = offset_seconds

    def _command(self, source: Path, target: Path, offset: float) -> list[str]:
        return [
            self._binary,
            "-y",
            "-ss", f"{offset:.3f}",
            "-i", str(source),
            "-frames:v", "1",
            "-f", "image2",
            "-c:v", "mjpeg",
            str(target),
        ]

    def _generate_sync(self, source: Path) -> Path:
        target = source.parent / THUMBNAIL_FILENAME
        result = _run_tool(self._command(source, target, self._offset), self._timeout)
        if result.returncode != 0 or not target.is_file() or target.stat().st_size == 0:
            # Seeking past the end of very short clips yields no frame; retry on the first frame
            result = _run_tool(self._command(source, target, 0.0), self._timeout)
        if result.returncode != 0 or not target.is_file():
            raise MediaToolError(
                f"thumbnail generation failed: {result.stderr.decode(errors='replace').strip()[-500:]}"
            )
        logger.info("Thumbnail generated for %s", source)
        return target

    async def generate(self, source: Path) -> Path:
        """Write the thumbnail next to the source media."""
        return await self._pool.run(self._generate_sync, source)
