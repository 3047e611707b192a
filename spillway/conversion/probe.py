"""
Source media probing with FFprobe, falling back to FFmpeg's banner.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Tuple, Union

from ..exceptions import ProcessTimeoutError, ResolutionProbeError
from .constants import DEFAULT_RESOLUTION, PROBE_TIMEOUT, RESOLUTION_PATTERN

logger = logging.getLogger(__name__)


class ResolutionProber:
    """Determines source dimensions, never failing the job."""

    def __init__(self, ffprobe_path: str, ffmpeg_path: str, timeout: float = PROBE_TIMEOUT):
        self.ffprobe_path = ffprobe_path
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    async def probe(self, path: Union[str, Path]) -> Tuple[int, int]:
        """
        Get (width, height) of the first video stream.

        Tries ffprobe, then scans ffmpeg's stream banner. When both fail
        the default 854x480 is returned so encoding can still proceed.
        """
        source = str(path)

        try:
            width, height = await self._probe_with_ffprobe(source)
            logger.info(f"[Probe] {Path(source).name}: {width}x{height} (ffprobe)")
            return width, height
        except (ResolutionProbeError, ProcessTimeoutError) as e:
            logger.warning(f"[Probe] ffprobe failed, trying ffmpeg: {e}")

        try:
            width, height = await self._probe_with_ffmpeg(source)
            logger.info(f"[Probe] {Path(source).name}: {width}x{height} (ffmpeg)")
            return width, height
        except (ResolutionProbeError, ProcessTimeoutError) as e:
            logger.warning(f"[Probe] ffmpeg probe failed: {e}")

        logger.warning(
            f"[Probe] Could not determine resolution, using default "
            f"{DEFAULT_RESOLUTION[0]}x{DEFAULT_RESOLUTION[1]}"
        )
        return DEFAULT_RESOLUTION

    async def probe_duration(self, path: Union[str, Path]) -> float:
        """Duration in seconds, or 0.0 when it cannot be read."""
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        try:
            returncode, stdout, _ = await self._run(cmd)
        except (ResolutionProbeError, ProcessTimeoutError) as e:
            logger.debug(f"[Probe] Duration probe failed: {e}")
            return 0.0

        if returncode != 0:
            return 0.0
        try:
            return float(stdout.strip().splitlines()[0])
        except (ValueError, IndexError):
            return 0.0

    async def _probe_with_ffprobe(self, source: str) -> Tuple[int, int]:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height",
            "-of", "default=noprint_wrappers=1",
            source,
        ]
        returncode, stdout, stderr = await self._run(cmd)
        if returncode != 0:
            raise ResolutionProbeError(
                f"ffprobe exited with {returncode}: {stderr.strip()[-200:]}"
            )

        width = height = 0
        for line in stdout.splitlines():
            line = line.strip()
            if line.startswith("width=") and not width:
                width = _parse_dimension(line[len("width="):])
            elif line.startswith("height=") and not height:
                height = _parse_dimension(line[len("height="):])

        if width <= 0 or height <= 0:
            raise ResolutionProbeError("ffprobe reported no usable dimensions")
        return width, height

    async def _probe_with_ffmpeg(self, source: str) -> Tuple[int, int]:
        # No output file is given, so ffmpeg exits non-zero after printing
        # the stream banner; only the banner matters here.
        cmd = [self.ffmpeg_path, "-hide_banner", "-i", source]
        _, _, stderr = await self._run(cmd)

        for line in stderr.splitlines():
            match = RESOLUTION_PATTERN.search(line)
            if match:
                width, height = int(match.group(1)), int(match.group(2))
                if width > 0 and height > 0:
                    return width, height

        raise ResolutionProbeError("No video stream found in ffmpeg output")

    async def _run(self, cmd: List[str]) -> Tuple[int, str, str]:
        tool = Path(cmd[0]).name
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ResolutionProbeError(f"Failed to start {tool}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            raise ProcessTimeoutError(tool, self.timeout)
        except asyncio.CancelledError:
            await _kill(process)
            raise

        return (
            process.returncode,
            stdout.decode("utf-8", errors="ignore"),
            stderr.decode("utf-8", errors="ignore"),
        )


def _parse_dimension(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
