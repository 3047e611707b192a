"""
HLS conversion package for Spillway.
Resolution probing, ladder selection, FFmpeg encoding, playlists and encryption.
"""

from .models import RenditionSpec
from .constants import (
    QUALITY_LADDER,
    DEFAULT_RESOLUTION,
    CANCELLED_MESSAGE,
)
from .ladder import (
    select_renditions,
    get_rendition_by_name,
    get_rendition_by_height,
    best_rendition_for_resolution,
)
from .encoders import HWAccelType, ACCELERATOR_ENCODERS, EncoderSelector
from .commands import CommandBuilder, resolve_executable
from .probe import ResolutionProber
from .hardware import HardwareDetector, get_hardware_detector, reset_hardware_detector
from .diagnostics import ErrorClassifier, get_error_classifier
from .progress import EncoderOutputParser, ProgressTracker
from .process import ProcessRegistry, EncoderProcessManager
from .playlist import PlaylistPostProcessor
from .encryption import SegmentEncryptor
from .orchestrator import ConversionOrchestrator

__all__ = [
    "RenditionSpec",
    "QUALITY_LADDER",
    "DEFAULT_RESOLUTION",
    "CANCELLED_MESSAGE",
    "select_renditions",
    "get_rendition_by_name",
    "get_rendition_by_height",
    "best_rendition_for_resolution",
    "HWAccelType",
    "ACCELERATOR_ENCODERS",
    "EncoderSelector",
    "CommandBuilder",
    "resolve_executable",
    "ResolutionProber",
    "HardwareDetector",
    "get_hardware_detector",
    "reset_hardware_detector",
    "ErrorClassifier",
    "get_error_classifier",
    "EncoderOutputParser",
    "ProgressTracker",
    "ProcessRegistry",
    "EncoderProcessManager",
    "PlaylistPostProcessor",
    "SegmentEncryptor",
    "ConversionOrchestrator",
]
