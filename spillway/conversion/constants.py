"""
Constants and presets for conversion operations.
"""

import re
from typing import List, Tuple

from .models import RenditionSpec


# Fixed ladder, highest first
QUALITY_LADDER: List[RenditionSpec] = [
    RenditionSpec("2160p", 2160, 3840, "8000k", "8500k", "12000k", "192k", 8500000),
    RenditionSpec("1080p", 1080, 1920, "5000k", "5350k", "7500k", "192k", 5350000),
    RenditionSpec("720p", 720, 1280, "2500k", "2675k", "3750k", "128k", 2675000),
    RenditionSpec("480p", 480, 854, "1000k", "1075k", "1500k", "128k", 1075000),
    RenditionSpec("360p", 360, 640, "500k", "538k", "750k", "96k", 538000),
]

# Used when neither probe strategy yields dimensions
DEFAULT_RESOLUTION: Tuple[int, int] = (854, 480)

SEGMENT_EXTENSION = ".ts"
PLAYLIST_EXTENSION = ".m3u8"
SCRATCH_SUFFIX = "_temp"

# Encoder diagnostic stream patterns
RESOLUTION_PATTERN = re.compile(r"Stream .* Video:.* (\d+)x(\d+)[,\s]")
DURATION_PATTERN = re.compile(r"Duration: (\d+):(\d+):(\d+\.\d+)")
PROGRESS_PATTERN = re.compile(r"time=(\d+):(\d+):(\d+\.\d+)")

# Timeouts (seconds)
PROBE_TIMEOUT = 30
HW_LIST_TIMEOUT = 10
ENCODE_TIMEOUT = 120 * 60

# Progress ceiling until the job is marked completed
MAX_RUNNING_PROGRESS = 99

# Encoder diagnostic lines kept for error reporting
STDERR_TAIL_LINES = 100

CANCELLED_MESSAGE = "Conversion cancelled by user"
