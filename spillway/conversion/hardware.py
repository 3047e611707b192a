"""
Hardware accelerator detection.

Detection runs real FFmpeg encodes, so the result is computed once per
process and shared by every job.
"""

import logging
import subprocess
import threading
from typing import List, Optional

from ..config import HardwareConfig, get_config
from .commands import CommandBuilder, resolve_executable
from .constants import HW_LIST_TIMEOUT
from .encoders import ACCELERATOR_ENCODERS, EncoderSelector, HWAccelType

logger = logging.getLogger(__name__)


class HardwareDetector:
    """Finds the first accelerator that is both listed and actually works."""

    def __init__(self, command_builder: CommandBuilder, hw_config: HardwareConfig):
        self.command_builder = command_builder
        self.hw_config = hw_config
        self._lock = threading.Lock()
        self._checked = False
        self._accel: Optional[HWAccelType] = None

    def detect(self) -> Optional[HWAccelType]:
        """
        Get the validated accelerator, or None for software encoding.

        Blocking. The first caller runs detection while holding the lock;
        concurrent callers wait and then reuse the cached answer.
        """
        with self._lock:
            if not self._checked:
                self._accel = self._detect()
                self._checked = True
            return self._accel

    def reset(self) -> None:
        with self._lock:
            self._checked = False
            self._accel = None

    def _detect(self) -> Optional[HWAccelType]:
        if not self.hw_config.enable_hw_accel:
            logger.info("[HWAccel] Hardware acceleration disabled, using software encoding")
            return None

        available = self.list_hardware_encoders()
        if not available:
            logger.info("[HWAccel] No hardware encoders listed by FFmpeg")
            return None

        for accel in available:
            if self.validate(accel):
                logger.info(f"[HWAccel] Using {accel.value} ({ACCELERATOR_ENCODERS[accel]})")
                return accel
            logger.info(f"[HWAccel] {accel.value} listed but failed validation")

        logger.info("[HWAccel] No working accelerator, using software encoding")
        return None

    def list_hardware_encoders(self) -> List[HWAccelType]:
        """Accelerators whose encoder appears in `ffmpeg -encoders`."""
        cmd = self.command_builder.build_list_encoders_command()
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="ignore",
                timeout=HW_LIST_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            logger.warning("[HWAccel] Listing encoders timed out")
            return []
        except OSError as e:
            logger.warning(f"[HWAccel] Could not run FFmpeg: {e}")
            return []

        output = result.stdout + result.stderr
        return [
            accel for accel, encoder in ACCELERATOR_ENCODERS.items()
            if encoder in output
        ]

    def validate(self, accel: HWAccelType) -> bool:
        """Run a short test encode; only exit code 0 counts."""
        cmd = self.command_builder.build_hw_test_command(accel)
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.hw_config.test_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"[HWAccel] Test encode for {accel.value} timed out")
            return False
        except OSError as e:
            logger.warning(f"[HWAccel] Test encode for {accel.value} failed to start: {e}")
            return False
        return result.returncode == 0


# Global detector instance
_detector: Optional[HardwareDetector] = None
_detector_lock = threading.Lock()


def get_hardware_detector() -> HardwareDetector:
    """Get or create the global hardware detector."""
    global _detector
    with _detector_lock:
        if _detector is None:
            config = get_config()
            selector = EncoderSelector(config.hardware, config.conversion.encoding_preset)
            builder = CommandBuilder(
                resolve_executable(config.conversion.ffmpeg_path, "ffmpeg"),
                selector,
                config.conversion,
            )
            _detector = HardwareDetector(builder, config.hardware)
        return _detector


def reset_hardware_detector() -> None:
    """Drop the global detector so the next call re-reads configuration."""
    global _detector
    with _detector_lock:
        _detector = None
