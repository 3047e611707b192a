"""
Data classes for conversion operations.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RenditionSpec:
    """One rung of the quality ladder."""
    name: str
    height: int
    width: int  # Informational; encodes scale by height and keep aspect
    video_bitrate: str
    max_bitrate: str
    buffer_size: str
    audio_bitrate: str
    bandwidth: int  # Bits per second, advertised in the master playlist

    @property
    def is_hd(self) -> bool:
        return self.height >= 720

    @property
    def is_4k(self) -> bool:
        return self.height >= 2160

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def playlist_name(self) -> str:
        return f"{self.name}.m3u8"

    @property
    def segment_pattern(self) -> str:
        return f"{self.name}_%03d.ts"
