"""
Command-line entry point for Spillway.

Usage:
    spillway convert movie.mp4 --video-id abc123
    spillway convert movie.mp4 --encryption-key "$(spillway generate-key)"
    spillway probe movie.mp4
    spillway detect-hw
    spillway generate-key
"""

import argparse
import asyncio
import logging
import sys
import uuid
from typing import List, Optional

from . import __version__
from .config import load_config, set_config
from .conversion import (
    ConversionOrchestrator,
    ResolutionProber,
    SegmentEncryptor,
    get_hardware_detector,
    resolve_executable,
    select_renditions,
)
from .logging_config import setup_logging
from .models import ConversionStatus
from .repository import InMemoryVideoRepository
from .storage import FileSystemStorageService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spillway",
        description="Convert videos into adaptive-bitrate HLS packages",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to a spillway.yaml configuration file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser("convert", help="Convert a source video to HLS")
    convert.add_argument("source", help="Source video file (deleted after conversion)")
    convert.add_argument("--video-id", help="Output directory name (default: random)")
    convert.add_argument("--encryption-key", help="Base64 AES-256 key to encrypt segments")

    probe = subparsers.add_parser("probe", help="Show resolution and selected renditions")
    probe.add_argument("source")

    subparsers.add_parser("detect-hw", help="Detect a working hardware encoder")
    subparsers.add_parser("generate-key", help="Print a new base64 encryption key")

    return parser


async def _convert(args: argparse.Namespace) -> int:
    orchestrator = ConversionOrchestrator(InMemoryVideoRepository(), FileSystemStorageService())
    video_id = args.video_id or uuid.uuid4().hex
    job = await orchestrator.convert(args.source, video_id, args.encryption_key)

    if job.status == ConversionStatus.COMPLETED:
        master = orchestrator.playlist_processor.playlist_path(job.output_dir, video_id)
        print(f"{video_id}: completed -> {master}")
        return 0

    print(f"{video_id}: {job.status.value.lower()}: {job.error_message}", file=sys.stderr)
    return 1


async def _probe(args: argparse.Namespace, config) -> int:
    prober = ResolutionProber(
        resolve_executable(config.conversion.ffprobe_path, "ffprobe"),
        resolve_executable(config.conversion.ffmpeg_path, "ffmpeg"),
        timeout=config.conversion.probe_timeout,
    )
    width, height = await prober.probe(args.source)
    duration = await prober.probe_duration(args.source)
    renditions = select_renditions(width, height)
    print(f"resolution: {width}x{height}")
    print(f"duration:   {duration:.2f}s")
    print(f"renditions: {', '.join(r.name for r in renditions)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    set_config(config)
    setup_logging(config.logging)

    if args.command == "generate-key":
        print(SegmentEncryptor.generate_key())
        return 0

    if args.command == "detect-hw":
        accel = get_hardware_detector().detect()
        print(accel.value if accel else "software")
        return 0

    if args.command == "probe":
        return asyncio.run(_probe(args, config))

    return asyncio.run(_convert(args))


if __name__ == "__main__":
    sys.exit(main())
