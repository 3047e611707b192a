"""
Progress extraction from FFmpeg output and per-job aggregation.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from ..models import ConversionJob
from .constants import DURATION_PATTERN, MAX_RUNNING_PROGRESS, PROGRESS_PATTERN

logger = logging.getLogger(__name__)


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class EncoderOutputParser:
    """
    Stateful reader of one encoder's diagnostic lines.

    The input banner's `Duration:` is taken once; every later `time=` is
    turned into a percentage, capped at 99 because only a verified exit
    completes a rendition.
    """

    def __init__(self):
        self.total_seconds = 0.0
        self.last_percent = -1

    def feed(self, line: str) -> Optional[int]:
        """Consume one line; return a new percentage when it moved forward."""
        if self.total_seconds <= 0:
            match = DURATION_PATTERN.search(line)
            if match:
                self.total_seconds = _to_seconds(*match.groups())

        match = PROGRESS_PATTERN.search(line)
        if not match or self.total_seconds <= 0:
            return None

        current = _to_seconds(*match.groups())
        percent = min(MAX_RUNNING_PROGRESS, int(current / self.total_seconds * 100))
        if percent > self.last_percent:
            self.last_percent = percent
            return percent
        return None


class ProgressTracker:
    """
    Aggregates rendition progress into the job's overall percentage.

    Overall progress is the floor of the mean of all rendition values.
    In sequential mode that equals (completed * 100 + current) / total,
    and concurrently it is the plain average. It never goes backwards,
    stays at or below 99 until the job completes, and is handed to
    `on_persist` only after moving by at least `persist_threshold` points.
    """

    def __init__(
        self,
        job: ConversionJob,
        on_persist: Optional[Callable[[int], None]] = None,
        persist_threshold: int = 5,
    ):
        self.job = job
        self.on_persist = on_persist
        self.persist_threshold = persist_threshold
        self._lock = threading.Lock()
        self._last_persisted = job.progress
        for rendition in job.renditions:
            job.rendition_progress.setdefault(rendition.name, 0)

    def update(self, rendition: str, percent: int) -> None:
        with self._lock:
            percent = min(MAX_RUNNING_PROGRESS, percent)
            if percent <= self.job.rendition_progress.get(rendition, 0):
                return
            self.job.rendition_progress[rendition] = percent
            self._publish()

    def complete(self, rendition: str) -> None:
        """Mark a rendition done after its playlist was verified."""
        with self._lock:
            self.job.rendition_progress[rendition] = 100
            self._publish()

    @property
    def overall(self) -> int:
        values: Dict[str, int] = self.job.rendition_progress
        if not values:
            return 0
        return min(MAX_RUNNING_PROGRESS, sum(values.values()) // len(values))

    def _publish(self) -> None:
        overall = self.overall
        if overall <= self.job.progress:
            return
        self.job.progress = overall

        if overall - self._last_persisted >= self.persist_threshold:
            self._last_persisted = overall
            logger.debug(f"[Progress] {self.job.video_id}: {overall}%")
            if self.on_persist:
                self.on_persist(overall)
