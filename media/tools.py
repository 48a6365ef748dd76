"""
ffprobe and ffmpeg wrappers used by the video upload pipeline.

Each subprocess runs under an explicit timeout. When the timeout fires, or
the awaiting task is cancelled, the child is killed and reaped before the
error propagates, so no ffmpeg process outlives its request.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol, Tuple

from api.enums import AspectRatio
from api.errors import truncate_error
from api.metrics import MEDIA_TOOL_DURATION_SECONDS, MEDIA_TOOL_FAILURES_TOTAL
from media.aspect import classify_aspect_ratio

logger = logging.getLogger(__name__)

PROCESSED_SUFFIX = ".processed"

# How long to wait for a killed process to be reaped
PROCESS_KILL_WAIT = 5.0


class ProbeError(Exception):
    """ffprobe failed, timed out, or produced output without usable dimensions."""

    pass


class TranscodeError(Exception):
    """ffmpeg failed or timed out."""

    pass


@dataclass
class MediaDimensions:
    width: int
    height: int


class MediaTools(Protocol):
    """The media operations the upload pipeline depends on."""

    async def probe(self, path: Path) -> MediaDimensions: ...

    async def transcode(self, path: Path) -> Path: ...


def processed_path(path: Path, suffix: str = PROCESSED_SUFFIX) -> Path:
    """
    Return the output path for a processed copy of ``path``.

    The suffix goes before the extension, or at the end when there is none.

    Examples:
        >>> processed_path(Path("/assets/abc.mp4"))
        PosixPath('/assets/abc.processed.mp4')
        >>> processed_path(Path("/assets/abc"))
        PosixPath('/assets/abc.processed')
    """
    return path.with_name(f"{path.stem}{suffix}{path.suffix}")


async def cleanup_process(process: asyncio.subprocess.Process, context: str) -> None:
    """
    Kill a subprocess if it is still running and wait for it to exit.

    Handles the race where the process exits between checking returncode
    and calling kill().
    """
    if process.returncode is None:
        try:
            process.kill()
        except (ProcessLookupError, OSError):
            # Process already terminated
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=PROCESS_KILL_WAIT)
        except asyncio.TimeoutError:
            logger.warning(f"{context} process did not terminate after kill")


async def run_process(cmd: List[str], timeout: float, context: str) -> Tuple[int, bytes, bytes]:
    """
    Run a command to completion and return (returncode, stdout, stderr).

    Raises:
        asyncio.TimeoutError: If the command runs longer than timeout
        asyncio.CancelledError: If the awaiting task is cancelled
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        await cleanup_process(process, context)
        raise
    return process.returncode, stdout, stderr


def parse_probe_output(output: bytes) -> MediaDimensions:
    """
    Extract width and height of the first video stream from ffprobe JSON.

    Raises:
        ProbeError: If the output is not JSON or carries no positive dimensions
    """
    try:
        data = json.loads(output.decode("utf-8", errors="ignore"))
        stream = data["streams"][0]
        width = int(stream["width"])
        height = int(stream["height"])
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ProbeError(f"Unparsable ffprobe output: {e}") from e

    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid dimensions {width}x{height}")
    return MediaDimensions(width=width, height=height)


class FFmpegTools:
    """MediaTools implementation backed by the ffprobe and ffmpeg binaries."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        ffmpeg_path: str = "ffmpeg",
        probe_timeout: float = 30.0,
        transcode_timeout: float = 600.0,
    ):
        self.ffprobe_path = ffprobe_path
        self.ffmpeg_path = ffmpeg_path
        self.probe_timeout = probe_timeout
        self.transcode_timeout = transcode_timeout

    def probe_command(self, path: Path) -> List[str]:
        return [
            self.ffprobe_path,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height",
            "-of",
            "json",
            str(path),
        ]

    def transcode_command(self, path: Path, output_path: Path) -> List[str]:
        # Remux only: move the moov atom to the front without re-encoding
        return [
            self.ffmpeg_path,
            "-y",
            "-i",
            str(path),
            "-movflags",
            "faststart",
            "-map_metadata",
            "0",
            "-codec",
            "copy",
            "-f",
            "mp4",
            str(output_path),
        ]

    async def probe(self, path: Path) -> MediaDimensions:
        """Read the frame size of the first video stream in ``path``."""
        try:
            returncode, stdout, stderr = await run_process(self.probe_command(path), self.probe_timeout, "ffprobe")
        except asyncio.TimeoutError as e:
            raise ProbeError(f"ffprobe timed out after {self.probe_timeout}s") from e
        except OSError as e:
            raise ProbeError(f"Couldn't run ffprobe: {e}") from e

        if returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="ignore")
            raise ProbeError(f"ffprobe exited with code {returncode}: {truncate_error(stderr_text)}")

        return parse_probe_output(stdout)

    async def transcode(self, path: Path) -> Path:
        """
        Remux ``path`` for fast start and return the processed file's path.

        The partial output is removed when ffmpeg fails.
        """
        output_path = processed_path(path)
        try:
            returncode, _, stderr = await run_process(
                self.transcode_command(path, output_path), self.transcode_timeout, "ffmpeg"
            )
        except asyncio.TimeoutError as e:
            output_path.unlink(missing_ok=True)
            raise TranscodeError(f"ffmpeg timed out after {self.transcode_timeout}s") from e
        except asyncio.CancelledError:
            output_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            output_path.unlink(missing_ok=True)
            raise TranscodeError(f"Couldn't run ffmpeg: {e}") from e

        if returncode != 0:
            output_path.unlink(missing_ok=True)
            stderr_text = stderr.decode("utf-8", errors="ignore")
            raise TranscodeError(f"ffmpeg exited with code {returncode}: {truncate_error(stderr_text)}")

        return output_path


async def detect_aspect_ratio(tools: MediaTools, path: Path) -> AspectRatio:
    """Classify the video at ``path``; any probe failure yields OTHER."""
    start_time = time.monotonic()
    try:
        dimensions = await tools.probe(path)
    except ProbeError as e:
        MEDIA_TOOL_FAILURES_TOTAL.labels(tool="probe").inc()
        logger.warning(f"Couldn't probe {path.name}, using '{AspectRatio.OTHER.value}': {e}")
        return AspectRatio.OTHER
    finally:
        MEDIA_TOOL_DURATION_SECONDS.labels(tool="probe").observe(time.monotonic() - start_time)
    return classify_aspect_ratio(dimensions.width, dimensions.height)


async def optimize_for_streaming(tools: MediaTools, path: Path) -> Path:
    """Return a fast-start copy of ``path``, or ``path`` itself if remuxing fails."""
    start_time = time.monotonic()
    try:
        return await tools.transcode(path)
    except TranscodeError as e:
        MEDIA_TOOL_FAILURES_TOTAL.labels(tool="transcode").inc()
        logger.warning(f"Couldn't process {path.name}, uploading original: {e}")
        return path
    finally:
        MEDIA_TOOL_DURATION_SECONDS.labels(tool="transcode").observe(time.monotonic() - start_time)
