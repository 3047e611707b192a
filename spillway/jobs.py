"""
Job queue and bounded worker pool for Spillway conversions
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from .conversion.constants import CANCELLED_MESSAGE, SCRATCH_SUFFIX
from .conversion.orchestrator import ConversionOrchestrator
from .models import ConversionJob, ConversionStatus, VideoRecord

logger = logging.getLogger(__name__)


@dataclass
class QueuedConversion:
    """A conversion request waiting for a worker."""
    video_id: str
    source_file: Path
    encryption_key: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)
    result: "asyncio.Future[ConversionJob]" = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.cancelled_jobs: int = 0
        self.caller_run_jobs: int = 0
        self.total_conversion_time: float = 0.0
        self.hw_accel_usage: Dict[str, int] = {}
        self.start_time: datetime = datetime.utcnow()

    def record_job_complete(self, job: ConversionJob) -> None:
        """Record job completion stats."""
        self.total_jobs_processed += 1

        if job.status == ConversionStatus.CANCELLED:
            self.cancelled_jobs += 1
        elif job.status == ConversionStatus.COMPLETED:
            self.successful_jobs += 1
        else:
            self.failed_jobs += 1

        if job.hw_accel_used:
            self.hw_accel_usage[job.hw_accel_used] = \
                self.hw_accel_usage.get(job.hw_accel_used, 0) + 1

        if job.started_at and job.completed_at:
            self.total_conversion_time += (job.completed_at - job.started_at).total_seconds()

    @property
    def average_conversion_time(self) -> float:
        if self.successful_jobs > 0:
            return self.total_conversion_time / self.successful_jobs
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        """Service uptime in seconds."""
        return (datetime.utcnow() - self.start_time).total_seconds()


class JobManager:
    """
    Runs conversions on a fixed number of workers fed by a bounded queue.

    When the queue is full the submitting task runs the conversion itself
    instead of dropping it, which slows producers down.
    """

    def __init__(self, orchestrator: ConversionOrchestrator):
        self.orchestrator = orchestrator
        self.config = orchestrator.config
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.workers.queue_capacity)
        self.jobs: Dict[str, ConversionJob] = {}
        self.active_jobs: Set[str] = set()
        self.stats = JobStats()
        self._queued: Dict[str, QueuedConversion] = {}
        self._cancelled_queued: Set[str] = set()
        self._workers: List[asyncio.Task] = []
        self._running = False

    async def start(self) -> None:
        """Start the job manager workers."""
        if self._running:
            return

        self._running = True
        max_workers = self.config.workers.max_workers

        # Clean up scratch directories left behind by a previous run
        await self._cleanup_orphaned_dirs()

        for i in range(max_workers):
            worker = asyncio.create_task(self._worker(i))
            self._workers.append(worker)

        logger.info(f"[Jobs] Started {max_workers} conversion workers")

    async def stop(self) -> None:
        """Stop the job manager, cancelling running and queued conversions."""
        self._running = False

        for video_id in list(self.active_jobs):
            self.orchestrator.cancel(video_id)

        for worker in self._workers:
            worker.cancel()

        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        # Nothing will pick up what is still queued
        while not self.queue.empty():
            item = self.queue.get_nowait()
            self.queue.task_done()
            self._queued.pop(item.video_id, None)
            self._cancelled_queued.discard(item.video_id)
            self._resolve(item, self._cancel_before_start(item))

        logger.info("[Jobs] Job manager stopped")

    async def submit(
        self,
        source_file: Union[str, Path],
        video_id: str,
        encryption_key: Optional[str] = None,
    ) -> "asyncio.Future[ConversionJob]":
        """
        Queue a conversion.

        Returns a future resolved with the finished job. If the queue is
        full the conversion runs before this returns.
        """
        item = QueuedConversion(video_id, Path(source_file), encryption_key)

        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.info(f"[Jobs] Queue full, running {video_id} on the caller")
            self.stats.caller_run_jobs += 1
            await self._process(item)
            return item.result

        self._queued[video_id] = item
        logger.info(f"[Jobs] Queued {video_id} ({self.queue.qsize()} waiting)")
        return item.result

    def cancel(self, video_id: str) -> bool:
        """Cancel a running or still-queued conversion."""
        if self.orchestrator.cancel(video_id):
            return True

        if video_id in self._queued and video_id not in self._cancelled_queued:
            self._cancelled_queued.add(video_id)
            logger.info(f"[Jobs] Cancelled queued job {video_id}")
            return True

        return False

    def get_job(self, video_id: str) -> Optional[ConversionJob]:
        return self.jobs.get(video_id)

    def get_queue_length(self) -> int:
        return self.queue.qsize()

    def get_active_count(self) -> int:
        return len(self.active_jobs)

    async def _worker(self, worker_id: int) -> None:
        """Worker coroutine that processes jobs from the queue."""
        logger.debug(f"[Jobs] Worker {worker_id} started")

        while self._running:
            try:
                item = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                self._queued.pop(item.video_id, None)
                await self._process(item)
            except asyncio.CancelledError:
                break
            finally:
                self.queue.task_done()

        logger.debug(f"[Jobs] Worker {worker_id} stopped")

    async def _process(self, item: QueuedConversion) -> None:
        if item.video_id in self._cancelled_queued:
            self._cancelled_queued.discard(item.video_id)
            job = self._cancel_before_start(item)
        else:
            self.active_jobs.add(item.video_id)
            try:
                job = await self.orchestrator.convert(
                    item.source_file, item.video_id, item.encryption_key
                )
            except asyncio.CancelledError:
                if not item.result.done():
                    item.result.cancel()
                raise
            finally:
                self.active_jobs.discard(item.video_id)

        self._resolve(item, job)

    def _resolve(self, item: QueuedConversion, job: ConversionJob) -> None:
        self.jobs[item.video_id] = job
        self.stats.record_job_complete(job)
        if not item.result.done():
            item.result.set_result(job)

    def _cancel_before_start(self, item: QueuedConversion) -> ConversionJob:
        """Close out a job that was cancelled while still in the queue."""
        orchestrator = self.orchestrator
        job = ConversionJob(
            item.video_id,
            item.source_file,
            orchestrator.get_output_directory() / item.video_id,
            item.encryption_key,
        )
        job.error_message = CANCELLED_MESSAGE
        job.transition(ConversionStatus.CANCELLED)

        record = orchestrator.repository.find_by_id(item.video_id) or VideoRecord(id=item.video_id)
        record.conversion_status = ConversionStatus.CANCELLED
        record.conversion_error = CANCELLED_MESSAGE
        orchestrator.repository.save(record)
        orchestrator.storage.delete(item.source_file)
        return job

    async def _cleanup_orphaned_dirs(self) -> int:
        """Remove scratch directories of encrypted jobs that never finished."""
        output_root = self.orchestrator.get_output_directory()
        if not output_root.exists():
            return 0

        cleaned = 0
        for item in output_root.iterdir():
            if item.is_dir() and item.name.endswith(SCRATCH_SUFFIX):
                if self.orchestrator.storage.delete(item):
                    cleaned += 1
                    logger.info(f"[Jobs] Removed orphaned scratch dir: {item.name}")

        if cleaned > 0:
            logger.info(f"[Jobs] Cleaned up {cleaned} orphaned scratch dir(s)")

        return cleaned


# Global job manager instance
_job_manager: Optional[JobManager] = None


def get_job_manager() -> JobManager:
    """Get the global job manager instance."""
    if _job_manager is None:
        raise RuntimeError("Job manager has not been created; call set_job_manager() first")
    return _job_manager


def set_job_manager(manager: JobManager) -> None:
    """Set the global job manager instance."""
    global _job_manager
    _job_manager = manager
