"""
Spillway - HLS adaptive-bitrate conversion core.

Probes a source video, encodes a resolution ladder with FFmpeg and
publishes a master playlist, optionally with AES-GCM encrypted segments.
"""

__version__ = "1.0.0"
