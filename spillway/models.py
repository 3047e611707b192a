"""
Job and record models shared across Spillway.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

from .exceptions import InvalidStatusTransition

if TYPE_CHECKING:
    from .conversion.models import RenditionSpec


class ConversionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ConversionStatus.COMPLETED,
            ConversionStatus.FAILED,
            ConversionStatus.CANCELLED,
        )


@dataclass
class VideoRecord:
    """The fields of a stored video that conversion reads and writes."""
    id: str
    conversion_status: ConversionStatus = ConversionStatus.PENDING
    conversion_progress: int = 0
    conversion_error: Optional[str] = None
    playlist_url: Optional[str] = None
    encrypted: bool = False
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ConversionJob:
    """Represents one conversion of a source file into an HLS package."""
    video_id: str
    source_file: Path
    output_dir: Path
    encryption_key: Optional[str] = None
    renditions: List["RenditionSpec"] = field(default_factory=list)
    rendition_progress: Dict[str, int] = field(default_factory=dict)
    progress: int = 0
    status: ConversionStatus = ConversionStatus.PENDING
    error_message: Optional[str] = None
    hw_accel_used: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def encrypted(self) -> bool:
        return self.encryption_key is not None

    def transition(self, status: ConversionStatus) -> None:
        """Move to a new status; terminal states are final."""
        if self.status.is_terminal:
            raise InvalidStatusTransition(
                f"Job {self.video_id} is already {self.status.value}, cannot move to {status.value}"
            )
        self.status = status
        if status == ConversionStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = datetime.utcnow()
        elif status.is_terminal:
            self.completed_at = datetime.utcnow()
