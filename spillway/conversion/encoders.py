"""
Encoder selection for software and hardware-accelerated H.264.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..config import HardwareConfig

logger = logging.getLogger(__name__)


class HWAccelType(str, Enum):
    NVENC = "nvenc"
    QSV = "qsv"
    VAAPI = "vaapi"
    VIDEOTOOLBOX = "videotoolbox"


# Probed in this order; the first validated accelerator wins
ACCELERATOR_ENCODERS: Dict[HWAccelType, str] = {
    HWAccelType.NVENC: "h264_nvenc",
    HWAccelType.QSV: "h264_qsv",
    HWAccelType.VAAPI: "h264_vaapi",
    HWAccelType.VIDEOTOOLBOX: "h264_videotoolbox",
}

SOFTWARE_ENCODER = "libx264"

# VideoToolbox needs an explicit profile or it rejects some inputs
VIDEOTOOLBOX_ARGS = ["-profile:v", "main"]


class EncoderSelector:
    """Maps an accelerator (or none) to encoder name, options and filters."""

    def __init__(self, hw_config: HardwareConfig, software_preset: str = "veryfast"):
        self.hw_config = hw_config
        self.software_preset = software_preset

    def get_video_encoder(self, accel: Optional[HWAccelType]) -> Tuple[str, List[str]]:
        """Get the video encoder and its extra args."""
        if accel is None:
            return SOFTWARE_ENCODER, ["-preset", self.software_preset]

        encoder = ACCELERATOR_ENCODERS[accel]
        if accel == HWAccelType.NVENC:
            return encoder, ["-preset", self.hw_config.nvenc_preset]
        if accel == HWAccelType.QSV:
            return encoder, ["-preset", self.hw_config.qsv_preset]
        if accel == HWAccelType.VIDEOTOOLBOX:
            return encoder, VIDEOTOOLBOX_ARGS.copy()
        return encoder, []

    def get_input_args(self, accel: Optional[HWAccelType]) -> List[str]:
        """Global options that must precede the input."""
        if accel == HWAccelType.VAAPI:
            return ["-vaapi_device", self.hw_config.vaapi_device]
        return []

    def get_upload_filter(self, accel: Optional[HWAccelType]) -> Optional[str]:
        """Filter that moves frames onto the device, if the encoder needs one."""
        if accel == HWAccelType.VAAPI:
            return "format=nv12|vaapi,hwupload"
        return None

    def get_scale_filter(self, accel: Optional[HWAccelType], height: int) -> str:
        """Scale to a height while keeping aspect ratio and an even width."""
        if accel == HWAccelType.VAAPI:
            return f"{self.get_upload_filter(accel)},scale_vaapi=w=-2:h={height}"
        return f"scale=-2:{height}"
