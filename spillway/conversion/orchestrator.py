"""
Conversion orchestrator: source file in, HLS package out.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from ..config import SpillwayConfig, get_config
from ..exceptions import (
    ConversionCancelledError,
    ConversionError,
    EncryptionError,
    UnsupportedFormatError,
)
from ..models import ConversionJob, ConversionStatus, VideoRecord
from ..repository import VideoRepository
from ..storage import StorageService
from .commands import CommandBuilder, resolve_executable
from .constants import SCRATCH_SUFFIX
from .encoders import EncoderSelector, HWAccelType
from .encryption import SegmentEncryptor
from .hardware import HardwareDetector, get_hardware_detector
from .ladder import select_renditions
from .models import RenditionSpec
from .playlist import PlaylistPostProcessor
from .probe import ResolutionProber
from .process import EncoderProcessManager, ProcessRegistry
from .progress import ProgressTracker

# Thread pool for blocking work (hardware detection, segment encryption)
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="spillway_io")

logger = logging.getLogger(__name__)


class ConversionOrchestrator:
    """Drives one conversion job from validation to the final status update."""

    def __init__(
        self,
        repository: VideoRepository,
        storage: StorageService,
        config: Optional[SpillwayConfig] = None,
        prober: Optional[ResolutionProber] = None,
        process_manager: Optional[EncoderProcessManager] = None,
        hardware_detector: Optional[HardwareDetector] = None,
        playlist_processor: Optional[PlaylistPostProcessor] = None,
        encryptor: Optional[SegmentEncryptor] = None,
    ):
        self.config = config or get_config()
        self.repository = repository
        self.storage = storage

        conversion = self.config.conversion
        ffmpeg_path = resolve_executable(conversion.ffmpeg_path, "ffmpeg")
        ffprobe_path = resolve_executable(conversion.ffprobe_path, "ffprobe")
        command_builder = CommandBuilder(
            ffmpeg_path,
            EncoderSelector(self.config.hardware, conversion.encoding_preset),
            conversion,
        )

        self.prober = prober or ResolutionProber(
            ffprobe_path, ffmpeg_path, timeout=conversion.probe_timeout
        )
        self.process_manager = process_manager or EncoderProcessManager(
            command_builder, encode_timeout=conversion.encode_timeout_minutes * 60
        )
        if hardware_detector is None:
            # The shared detector follows the global config; an injected config gets its own
            hardware_detector = (
                get_hardware_detector() if config is None
                else HardwareDetector(command_builder, self.config.hardware)
            )
        self.hardware_detector = hardware_detector
        self.playlist_processor = playlist_processor or PlaylistPostProcessor(
            self.config.server.base_url, self.config.playlist.absolute_urls
        )
        self.encryptor = encryptor or SegmentEncryptor()
        self.output_root = Path(conversion.output_directory)

    @property
    def registry(self) -> ProcessRegistry:
        return self.process_manager.registry

    def get_output_directory(self) -> Path:
        return self.output_root

    def is_supported(self, source: Path) -> bool:
        allowed = {ext.lower() for ext in self.config.conversion.supported_extensions}
        return source.suffix.lower() in allowed

    def cancel(self, video_id: str) -> bool:
        """Cancel a running conversion. False if the video has no active job."""
        return self.process_manager.cancel(video_id)

    def cleanup_video_files(self, video_id: str) -> bool:
        """Delete a video's output and scratch directories."""
        removed = self.storage.delete(self.output_root / video_id)
        scratch_removed = self.storage.delete(self._scratch_dir(video_id))
        return removed or scratch_removed

    def _scratch_dir(self, video_id: str) -> Path:
        return self.output_root / f"{video_id}{SCRATCH_SUFFIX}"

    async def convert(
        self,
        source_file: Union[str, Path],
        video_id: str,
        encryption_key: Optional[str] = None,
    ) -> ConversionJob:
        """
        Convert a source file into an HLS package under <output>/<video_id>.

        Never raises for conversion failures: the outcome is recorded on the
        returned job and on the video record. The source file is deleted
        whatever the outcome.
        """
        source = Path(source_file)
        output_dir = self.output_root / video_id
        job = ConversionJob(video_id, source, output_dir, encryption_key)
        record = self.repository.find_by_id(video_id) or VideoRecord(id=video_id)

        if not self.is_supported(source):
            self._reject(job, record, UnsupportedFormatError(source.name))
            return job

        if encryption_key is not None and not self.encryptor.is_valid_key(encryption_key):
            self._reject(job, record, EncryptionError("Invalid encryption key"))
            return job
        if record.encrypted and encryption_key is None:
            self._reject(job, record, EncryptionError("Encryption key required for encrypted video"))
            return job

        encode_dir = self._scratch_dir(video_id) if job.encrypted else output_dir
        if not self.registry.open(video_id):
            # Another job owns this video; leave its record and files alone
            job.error_message = f"Video {video_id} is already being converted"
            job.transition(ConversionStatus.FAILED)
            logger.warning(f"[Convert] Rejected {video_id}: conversion already in progress")
            return job

        try:
            await self._run(job, record, encode_dir)
        except ConversionCancelledError as e:
            self._abort(job, record, ConversionStatus.CANCELLED, str(e))
        except ConversionError as e:
            self._abort(job, record, ConversionStatus.FAILED, str(e))
        except OSError as e:
            self._abort(job, record, ConversionStatus.FAILED, f"I/O error during conversion: {e}")
        except asyncio.CancelledError:
            self._abort(job, record, ConversionStatus.CANCELLED, "Conversion interrupted")
            raise
        except Exception as e:
            logger.exception(f"[Convert] Unexpected error converting {video_id}: {e}")
            self._abort(job, record, ConversionStatus.FAILED, f"Unexpected error: {e}")
        finally:
            self.registry.close(video_id)
            if job.encrypted:
                self.storage.delete(encode_dir)

        return job

    async def _run(self, job: ConversionJob, record: VideoRecord, encode_dir: Path) -> None:
        video_id = job.video_id
        loop = asyncio.get_running_loop()

        job.transition(ConversionStatus.IN_PROGRESS)
        record.conversion_status = ConversionStatus.IN_PROGRESS
        record.conversion_progress = 0
        record.conversion_error = None
        record.encrypted = job.encrypted
        self.repository.save(record)
        logger.info(f"[Convert] Starting {video_id} from {job.source_file.name}")

        width, height = await self.prober.probe(job.source_file)
        job.renditions = select_renditions(width, height)
        logger.info(
            f"[Convert] {video_id}: {width}x{height} -> "
            f"{', '.join(r.name for r in job.renditions)}"
        )
        self._check_cancelled(video_id)

        accel = await loop.run_in_executor(_executor, self.hardware_detector.detect)
        job.hw_accel_used = accel.value if accel else "software"
        self._check_cancelled(video_id)

        encode_dir.mkdir(parents=True, exist_ok=True)

        def persist(progress: int) -> None:
            record.conversion_progress = progress
            try:
                self.repository.save(record)
            except Exception as e:
                logger.warning(f"[Convert] {video_id}: progress {progress}% not saved: {e}")

        tracker = ProgressTracker(job, persist, self.config.progress.persist_threshold)

        if self.config.conversion.parallel_renditions:
            await self._encode_concurrently(job, encode_dir, accel, tracker)
        else:
            for rendition in job.renditions:
                await self._encode_rendition(job, encode_dir, rendition, accel, tracker)
        self._check_cancelled(video_id)

        if job.encrypted:
            await loop.run_in_executor(
                _executor,
                self.encryptor.encrypt_directory,
                encode_dir,
                job.output_dir,
                job.encryption_key,
            )
            self._check_cancelled(video_id)

        self.playlist_processor.build_master_playlist(job.output_dir, video_id, job.renditions)

        # After this point a cancel request finds no job and returns False
        if self.registry.close(video_id):
            raise ConversionCancelledError()

        job.transition(ConversionStatus.COMPLETED)
        job.progress = 100
        record.conversion_status = ConversionStatus.COMPLETED
        record.conversion_progress = 100
        record.conversion_error = None
        record.playlist_url = self.playlist_processor.master_playlist_url(video_id)
        self.repository.save(record)
        self.storage.delete(job.source_file)
        logger.info(f"[Convert] Completed {video_id} ({job.hw_accel_used})")

    async def _encode_rendition(
        self,
        job: ConversionJob,
        encode_dir: Path,
        rendition: RenditionSpec,
        accel: Optional[HWAccelType],
        tracker: ProgressTracker,
    ) -> None:
        await self.process_manager.run(
            job.source_file,
            encode_dir,
            job.video_id,
            rendition,
            accel,
            on_progress=tracker.update,
        )

        playlist = encode_dir / rendition.playlist_name
        if not playlist.exists():
            raise ConversionError(f"Encoder produced no playlist for {rendition.name}")

        self.playlist_processor.rewrite_segment_urls(playlist, job.video_id)
        tracker.complete(rendition.name)

    async def _encode_concurrently(
        self,
        job: ConversionJob,
        encode_dir: Path,
        accel: Optional[HWAccelType],
        tracker: ProgressTracker,
    ) -> None:
        """Encode all renditions at once; the first failure stops the rest."""
        tasks = [
            asyncio.create_task(self._encode_rendition(job, encode_dir, rendition, accel, tracker))
            for rendition in job.renditions
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            self.process_manager.kill_all(job.video_id)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        errors = [task.exception() for task in done if task.exception() is not None]
        if not errors:
            return
        for error in errors:
            if isinstance(error, ConversionCancelledError):
                raise error
        raise errors[0]

    def _check_cancelled(self, video_id: str) -> None:
        if self.registry.was_cancelled(video_id):
            raise ConversionCancelledError()

    def _reject(self, job: ConversionJob, record: VideoRecord, error: ConversionError) -> None:
        """Fail a job before any process or directory exists."""
        logger.warning(f"[Convert] Rejected {job.video_id}: {error}")
        job.error_message = str(error)
        job.transition(ConversionStatus.FAILED)
        record.conversion_status = ConversionStatus.FAILED
        record.conversion_error = str(error)
        self.repository.save(record)
        self.storage.delete(job.source_file)

    def _abort(
        self,
        job: ConversionJob,
        record: VideoRecord,
        status: ConversionStatus,
        message: str,
    ) -> None:
        """Record a failed or cancelled job and remove everything it produced."""
        self.process_manager.kill_all(job.video_id)

        if status == ConversionStatus.CANCELLED:
            logger.info(f"[Convert] {job.video_id} cancelled")
        else:
            logger.error(f"[Convert] {job.video_id} failed: {message}")

        job.error_message = message
        if not job.status.is_terminal:
            job.transition(status)
        record.conversion_status = job.status
        record.conversion_error = message
        self.repository.save(record)

        self.storage.delete(job.output_dir)
        self.storage.delete(job.source_file)
