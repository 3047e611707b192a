"""
Spillway Test Configuration and Fixtures

Provides:
- Stand-in ffmpeg/ffprobe executables (no real encoder needed)
- Isolated configuration with a per-test output directory
- Shared fixtures for repository, storage and orchestrator
"""

import json
import shutil
import stat
import sys
from pathlib import Path
from typing import List, Optional

import pytest

from spillway.config import SpillwayConfig, set_config
from spillway.conversion import (
    CommandBuilder,
    ConversionOrchestrator,
    EncoderSelector,
    HardwareDetector,
    reset_hardware_detector,
)
from spillway.repository import InMemoryVideoRepository
from spillway.storage import FileSystemStorageService


# =============================================================================
# FAKE ENCODER TOOLS
# =============================================================================

FFPROBE_SCRIPT = '''
import json, sys
from pathlib import Path

settings = json.loads({settings!r})
args = sys.argv[1:]
with open(settings["log"], "a") as log:
    log.write(json.dumps(["ffprobe"] + args) + "\\n")

if "format=duration" in args:
    print(settings["duration"])
    sys.exit(0)

if settings["ffprobe_fails"]:
    print("ffprobe: unable to open input", file=sys.stderr)
    sys.exit(1)

print("width=%d" % settings["width"])
print("height=%d" % settings["height"])
'''

FFMPEG_SCRIPT = '''
import json, sys, time
from pathlib import Path

settings = json.loads({settings!r})
args = sys.argv[1:]
with open(settings["log"], "a") as log:
    log.write(json.dumps(["ffmpeg"] + args) + "\\n")

if "-encoders" in args:
    print("Encoders:")
    print(" V....D libx264              libx264 H.264 / AVC")
    for name in settings["encoders"]:
        print(" V....D %-20s hardware encoder" % name)
    sys.exit(0)

if args[-1] == "-" and "null" in args:
    encoder = args[args.index("-c:v") + 1]
    sys.exit(0 if encoder in settings["working_encoders"] else 1)

if "-hls_segment_filename" not in args:
    source = args[args.index("-i") + 1]
    sys.stderr.write("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from '%s':\\n" % source)
    sys.stderr.write("  Duration: 00:00:10.00, start: 0.000000, bitrate: 1000 kb/s\\n")
    if settings["banner_resolution"]:
        sys.stderr.write(
            "  Stream #0:0(und): Video: h264 (High) (avc1 / 0x31637661), yuv420p, "
            "%s [SAR 1:1 DAR 16:9], 900 kb/s, 30 fps\\n" % settings["banner_resolution"]
        )
    sys.stderr.write("At least one output file must be specified\\n")
    sys.exit(1)

playlist = Path(args[-1])
segment_pattern = args[args.index("-hls_segment_filename") + 1]
name = playlist.stem

total = settings["duration"]
sys.stderr.write("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'source':\\n")
sys.stderr.write("  Duration: 00:00:%05.2f, start: 0.000000, bitrate: 1000 kb/s\\n" % total)
sys.stderr.flush()

steps = settings["steps"]
for step in range(1, steps + 1):
    seconds = total * step / steps
    sys.stderr.write(
        "frame=%5d fps=30 q=28.0 size=N/A time=00:00:%05.2f bitrate=N/A speed=2.0x\\r"
        % (step * 30, seconds)
    )
    sys.stderr.flush()
    time.sleep(settings["step_delay"])

padding = settings["stderr_padding"]
while padding > 0:
    noise = "[hls @ 0x55d0] Opening segment for writing " + "x" * 80 + "\\n"
    sys.stderr.write(noise)
    padding -= len(noise)
sys.stderr.flush()

if name == settings["fail_rendition"]:
    sys.stderr.write("\\n[hls @ 0x55d0] No space left on device\\n")
    sys.stderr.write("Conversion failed!\\n")
    sys.exit(settings["fail_exit_code"])

sys.stderr.write("\\n")
segments = []
for index in range(3):
    segment = Path(segment_pattern % index)
    segment.write_bytes(("%s segment %d " % (name, index)).encode() * 64)
    segments.append(segment.name)

if name not in settings["skip_playlist"]:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-TARGETDURATION:4",
        "#EXT-X-MEDIA-SEQUENCE:0",
        "#EXT-X-PLAYLIST-TYPE:VOD",
        "#EXT-X-INDEPENDENT-SEGMENTS",
    ]
    for segment_name in segments:
        lines.append("#EXTINF:4.000000,")
        lines.append(segment_name)
    lines.append("#EXT-X-ENDLIST")
    playlist.write_text("\\n".join(lines) + "\\n")
'''


class FakeEncoderTools:
    """
    Writes ffmpeg/ffprobe stand-ins into a directory.

    The scripts behave like the real tools for the arguments Spillway
    passes, log every invocation, and can be told to fail or run slowly.
    """

    def __init__(self, bin_dir: Path):
        self.bin_dir = bin_dir
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        self.log_path = bin_dir / "invocations.log"
        self.ffmpeg = bin_dir / "ffmpeg"
        self.ffprobe = bin_dir / "ffprobe"
        self.configure()

    def configure(
        self,
        width: int = 1920,
        height: int = 1080,
        ffprobe_fails: bool = False,
        banner_resolution: Optional[str] = None,
        duration: float = 10.0,
        steps: int = 4,
        step_delay: float = 0.0,
        fail_rendition: Optional[str] = None,
        fail_exit_code: int = 1,
        skip_playlist: Optional[List[str]] = None,
        stderr_padding: int = 0,
        encoders: Optional[List[str]] = None,
        working_encoders: Optional[List[str]] = None,
    ) -> "FakeEncoderTools":
        settings = json.dumps({
            "log": str(self.log_path),
            "width": width,
            "height": height,
            "ffprobe_fails": ffprobe_fails,
            "banner_resolution": banner_resolution,
            "duration": duration,
            "steps": steps,
            "step_delay": step_delay,
            "fail_rendition": fail_rendition,
            "fail_exit_code": fail_exit_code,
            "skip_playlist": skip_playlist or [],
            "stderr_padding": stderr_padding,
            "encoders": encoders or [],
            "working_encoders": working_encoders or [],
        })
        self._write(self.ffprobe, FFPROBE_SCRIPT.format(settings=settings))
        self._write(self.ffmpeg, FFMPEG_SCRIPT.format(settings=settings))
        return self

    def _write(self, path: Path, body: str) -> None:
        path.write_text(f"#!{sys.executable}\n{body}")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def invocations(self, tool: Optional[str] = None) -> List[List[str]]:
        if not self.log_path.exists():
            return []
        calls = [json.loads(line) for line in self.log_path.read_text().splitlines() if line]
        if tool:
            calls = [call for call in calls if call[0] == tool]
        return calls

    def encode_invocations(self) -> List[List[str]]:
        return [call for call in self.invocations("ffmpeg") if "-hls_segment_filename" in call]


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture
def fake_tools(tmp_path) -> FakeEncoderTools:
    """Per-test fake ffmpeg/ffprobe pair."""
    return FakeEncoderTools(tmp_path / "bin")


@pytest.fixture
def output_root(tmp_path) -> Path:
    root = tmp_path / "content"
    root.mkdir()
    return root


@pytest.fixture
def test_config(fake_tools, output_root):
    """
    Isolated configuration pointing at the fake tools.
    Installed as the global config for the duration of the test.
    """
    config = SpillwayConfig()
    config.server.base_url = "http://media.test:8081"
    config.conversion.ffmpeg_path = str(fake_tools.ffmpeg)
    config.conversion.ffprobe_path = str(fake_tools.ffprobe)
    config.conversion.output_directory = str(output_root)
    config.conversion.probe_timeout = 10
    config.hardware.enable_hw_accel = False
    config.logging.level = "WARNING"

    set_config(config)
    reset_hardware_detector()

    yield config

    set_config(SpillwayConfig())
    reset_hardware_detector()


@pytest.fixture
def repository() -> InMemoryVideoRepository:
    return InMemoryVideoRepository()


@pytest.fixture
def storage() -> FileSystemStorageService:
    return FileSystemStorageService()


@pytest.fixture
def command_builder(test_config) -> CommandBuilder:
    return CommandBuilder(
        test_config.conversion.ffmpeg_path,
        EncoderSelector(test_config.hardware, test_config.conversion.encoding_preset),
        test_config.conversion,
    )


@pytest.fixture
def orchestrator(test_config, repository, storage, command_builder) -> ConversionOrchestrator:
    return ConversionOrchestrator(
        repository,
        storage,
        config=test_config,
        hardware_detector=HardwareDetector(command_builder, test_config.hardware),
    )


@pytest.fixture
def source_video(tmp_path) -> Path:
    """A placeholder upload; the fake tools never read it."""
    path = tmp_path / "uploads" / "holiday.mp4"
    path.parent.mkdir()
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 256)
    return path


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require a real FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not shutil.which("ffmpeg"):
        pytest.skip("FFmpeg not available")
