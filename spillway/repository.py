"""
Video-record collaborator.

Conversion only needs to load a record and save status/progress/error
updates back; the in-memory implementation backs the CLI and the tests.
"""

import copy
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .models import VideoRecord


class VideoRepository(Protocol):
    def save(self, record: VideoRecord) -> VideoRecord:
        ...

    def find_by_id(self, video_id: str) -> Optional[VideoRecord]:
        ...


class InMemoryVideoRepository:
    """Thread-safe dict-backed repository that keeps a save history."""

    def __init__(self):
        self._records: Dict[str, VideoRecord] = {}
        self._history: Dict[str, List[VideoRecord]] = {}
        self._lock = threading.Lock()

    def save(self, record: VideoRecord) -> VideoRecord:
        record.updated_at = datetime.utcnow()
        snapshot = copy.copy(record)
        with self._lock:
            self._records[record.id] = snapshot
            self._history.setdefault(record.id, []).append(snapshot)
        return record

    def find_by_id(self, video_id: str) -> Optional[VideoRecord]:
        with self._lock:
            record = self._records.get(video_id)
        return copy.copy(record) if record else None

    def history(self, video_id: str) -> List[VideoRecord]:
        """Every saved snapshot of a record, oldest first."""
        with self._lock:
            return list(self._history.get(video_id, []))
