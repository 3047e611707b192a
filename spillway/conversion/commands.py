"""
FFmpeg command building for per-rendition HLS output and accelerator tests.
"""

import logging
import shutil
from pathlib import Path
from typing import List, Optional

from ..config import ConversionConfig
from .encoders import EncoderSelector, HWAccelType
from .models import RenditionSpec

logger = logging.getLogger(__name__)


def resolve_executable(configured: str, name: str) -> str:
    """Use the configured path, or look the tool up on PATH when 'auto'."""
    if configured and configured != "auto":
        return configured
    return shutil.which(name) or name


def _ffmpeg_path(path: Path) -> str:
    # Forward slashes work for FFmpeg on every platform
    return str(path).replace("\\", "/")


class CommandBuilder:
    """Builds FFmpeg commands for conversion operations."""

    def __init__(
        self,
        ffmpeg_path: str,
        encoder_selector: EncoderSelector,
        conversion_config: ConversionConfig,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.encoder_selector = encoder_selector
        self.conversion_config = conversion_config

    def build_rendition_command(
        self,
        source: Path,
        output_dir: Path,
        rendition: RenditionSpec,
        accel: Optional[HWAccelType] = None,
    ) -> List[str]:
        """
        Build the command that encodes one rendition into HLS.

        Writes <name>_%03d.ts segments and <name>.m3u8 into output_dir.
        """
        video_encoder, encoder_args = self.encoder_selector.get_video_encoder(accel)

        cmd = [self.ffmpeg_path, "-hide_banner", "-y"]
        cmd.extend(self.encoder_selector.get_input_args(accel))
        cmd.extend(["-i", _ffmpeg_path(source)])

        cmd.extend(["-c:v", video_encoder])
        cmd.extend(encoder_args)
        cmd.extend([
            "-b:v", rendition.video_bitrate,
            "-maxrate", rendition.max_bitrate,
            "-bufsize", rendition.buffer_size,
        ])

        cmd.extend(["-c:a", "aac", "-b:a", rendition.audio_bitrate])
        cmd.extend(["-vf", self.encoder_selector.get_scale_filter(accel, rendition.height)])

        cmd.extend([
            "-f", "hls",
            "-hls_time", str(self.conversion_config.segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_segment_type", "mpegts",
            "-hls_flags", "independent_segments",
            "-hls_segment_filename", _ffmpeg_path(output_dir / rendition.segment_pattern),
            "-hls_list_size", "0",
            _ffmpeg_path(output_dir / rendition.playlist_name),
        ])

        return cmd

    def build_hw_test_command(self, accel: HWAccelType) -> List[str]:
        """One second synthetic encode to the null muxer."""
        video_encoder, encoder_args = self.encoder_selector.get_video_encoder(accel)

        cmd = [self.ffmpeg_path, "-hide_banner"]
        cmd.extend(self.encoder_selector.get_input_args(accel))
        cmd.extend(["-f", "lavfi", "-i", "testsrc=duration=1:size=640x360:rate=30"])

        upload = self.encoder_selector.get_upload_filter(accel)
        if upload:
            cmd.extend(["-vf", upload])

        cmd.extend(["-c:v", video_encoder])
        cmd.extend(encoder_args)
        cmd.extend(["-f", "null", "-"])
        return cmd

    def build_list_encoders_command(self) -> List[str]:
        return [self.ffmpeg_path, "-hide_banner", "-encoders"]
