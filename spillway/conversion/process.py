"""
Encoder process lifecycle: launch, supervise, cancel.
"""

import asyncio
import codecs
import logging
import re
import signal
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional

from ..exceptions import ConversionCancelledError, EncodingProcessError
from .commands import CommandBuilder
from .constants import ENCODE_TIMEOUT, STDERR_TAIL_LINES
from .diagnostics import ErrorClassifier, get_error_classifier
from .encoders import HWAccelType
from .models import RenditionSpec
from .progress import EncoderOutputParser

logger = logging.getLogger(__name__)

# FFmpeg rewrites its status line with bare carriage returns
_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


class StderrLineSplitter:
    """Splits raw encoder output into lines, decoding UTF-8 across chunk boundaries."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = _LINE_SPLIT.split(self._buffer)
        return lines

    def close(self) -> List[str]:
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return [rest] if rest else []


@dataclass
class _RegistryEntry:
    processes: Dict[str, asyncio.subprocess.Process] = field(default_factory=dict)
    cancelled: bool = False


class ProcessRegistry:
    """
    Live encoder processes per video, guarded by a lock.

    An entry exists from the moment a job starts until it reaches a
    terminal state, so cancellation is accepted between renditions too.
    """

    def __init__(self):
        self._entries: Dict[str, _RegistryEntry] = {}
        self._lock = threading.Lock()

    def open(self, video_id: str) -> bool:
        """Create the entry; False if the video already has a job in flight."""
        with self._lock:
            if video_id in self._entries:
                return False
            self._entries[video_id] = _RegistryEntry()
            return True

    def close(self, video_id: str) -> bool:
        """Drop the entry; True if it had been cancelled."""
        with self._lock:
            entry = self._entries.pop(video_id, None)
            return entry is not None and entry.cancelled

    def add(self, video_id: str, rendition: str, process: asyncio.subprocess.Process) -> bool:
        """Register a process; False when the job is gone or already cancelled."""
        with self._lock:
            entry = self._entries.get(video_id)
            if entry is None or entry.cancelled:
                return False
            entry.processes[rendition] = process
            return True

    def discard(self, video_id: str, rendition: str) -> None:
        with self._lock:
            entry = self._entries.get(video_id)
            if entry:
                entry.processes.pop(rendition, None)

    def cancel(self, video_id: str) -> Optional[List[asyncio.subprocess.Process]]:
        """Flag the job cancelled and hand back its processes, or None if unknown."""
        with self._lock:
            entry = self._entries.get(video_id)
            if entry is None:
                return None
            entry.cancelled = True
            return list(entry.processes.values())

    def was_cancelled(self, video_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(video_id)
            return entry is not None and entry.cancelled

    def is_registered(self, video_id: str) -> bool:
        with self._lock:
            return video_id in self._entries

    def processes(self, video_id: str) -> List[asyncio.subprocess.Process]:
        with self._lock:
            entry = self._entries.get(video_id)
            return list(entry.processes.values()) if entry else []


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except (ProcessLookupError, OSError):
        pass


class EncoderProcessManager:
    """Runs one FFmpeg process per rendition and reports its progress."""

    def __init__(
        self,
        command_builder: CommandBuilder,
        registry: Optional[ProcessRegistry] = None,
        encode_timeout: float = ENCODE_TIMEOUT,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.command_builder = command_builder
        self.registry = registry or ProcessRegistry()
        self.encode_timeout = encode_timeout
        self.classifier = classifier or get_error_classifier()

    async def launch(
        self,
        source_file: Path,
        output_dir: Path,
        video_id: str,
        rendition: RenditionSpec,
        accel: Optional[HWAccelType] = None,
    ) -> asyncio.subprocess.Process:
        """Start the encoder for one rendition and register it under the video."""
        cmd = self.command_builder.build_rendition_command(source_file, output_dir, rendition, accel)
        logger.info(f"[Encode] {video_id}/{rendition.name}: {' '.join(cmd[:8])}...")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

        if not self.registry.add(video_id, rendition.name, process):
            _kill(process)
            await process.wait()
            raise ConversionCancelledError()

        return process

    async def run(
        self,
        source_file: Path,
        output_dir: Path,
        video_id: str,
        rendition: RenditionSpec,
        accel: Optional[HWAccelType] = None,
        on_progress: Optional[Callable[[str, int], None]] = None,
    ) -> None:
        """
        Encode one rendition to completion.

        Raises:
            ConversionCancelledError: the job was cancelled while encoding.
            EncodingProcessError: non-zero exit or the encode timed out.
        """
        process = await self.launch(source_file, output_dir, video_id, rendition, accel)
        parser = EncoderOutputParser()
        tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        def handle_line(line: str) -> None:
            tail.append(line)
            percent = parser.feed(line)
            if percent is not None and on_progress:
                try:
                    on_progress(rendition.name, percent)
                except Exception as e:
                    logger.warning(f"[Encode] {video_id}/{rendition.name} progress callback error: {e}")

        async def read_stderr():
            """Read stderr in its own task so the pipe never fills."""
            splitter = StderrLineSplitter()
            while True:
                chunk = await process.stderr.read(4096)
                if not chunk:
                    break
                for line in splitter.feed(chunk):
                    handle_line(line)
            for line in splitter.close():
                handle_line(line)

        reader = asyncio.create_task(read_stderr())
        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=self.encode_timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.error(f"[Encode] {video_id}/{rendition.name} exceeded {self.encode_timeout:.0f}s")
            await self._graceful_terminate(process)
        except asyncio.CancelledError:
            _kill(process)
            await process.wait()
            raise
        finally:
            await asyncio.gather(reader, return_exceptions=True)
            self.registry.discard(video_id, rendition.name)

        if self.registry.was_cancelled(video_id):
            raise ConversionCancelledError()

        if timed_out:
            raise EncodingProcessError(
                rendition.name, -1, f"timed out after {self.encode_timeout:g} seconds"
            )

        if process.returncode != 0:
            detail = self.classifier.describe(tail)
            logger.warning(
                f"[Encode] {video_id}/{rendition.name} failed (code {process.returncode}): {detail}"
            )
            raise EncodingProcessError(rendition.name, process.returncode, detail)

        logger.info(f"[Encode] {video_id}/{rendition.name} finished")

    def cancel(self, video_id: str) -> bool:
        """
        Force-stop every encoder of a video and flag the job cancelled.

        Returns False, changing nothing, when the video has no running job.
        """
        processes = self.registry.cancel(video_id)
        if processes is None:
            return False

        for process in processes:
            _kill(process)
        logger.info(f"[Encode] Cancelled {video_id} ({len(processes)} process(es) killed)")
        return True

    def kill_all(self, video_id: str) -> None:
        """Kill whatever is still running for a video without flagging cancellation."""
        for process in self.registry.processes(video_id):
            _kill(process)

    async def _graceful_terminate(self, process: asyncio.subprocess.Process) -> None:
        """
        Stop FFmpeg, giving it a chance to finish the current segment.

        SIGINT first (Unix), then SIGTERM, then SIGKILL.
        """
        if process.returncode is not None:
            return

        if sys.platform != "win32":
            try:
                process.send_signal(signal.SIGINT)
                await asyncio.wait_for(process.wait(), timeout=5.0)
                return
            except (ProcessLookupError, OSError):
                pass
            except asyncio.TimeoutError:
                pass

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=3.0)
            return
        except (asyncio.TimeoutError, ProcessLookupError, OSError):
            pass

        _kill(process)
        await process.wait()
        logger.warning("[Encode] FFmpeg killed forcefully")
