import asyncio

import pytest

from spillway.config import SpillwayConfig
from spillway.conversion import (
    ConversionOrchestrator,
    EncoderProcessManager,
    HWAccelType,
    SegmentEncryptor,
    get_hardware_detector,
)
from spillway.models import ConversionStatus, VideoRecord
from spillway.repository import InMemoryVideoRepository

BASE_URL = "http://media.test:8081"


def master_lines(output_root, video_id):
    return (output_root / video_id / f"{video_id}.m3u8").read_text().splitlines()


@pytest.mark.asyncio
@pytest.mark.parametrize("parallel", [False, True], ids=["sequential", "parallel"])
async def test_convert_full_hd(orchestrator, test_config, fake_tools, repository,
                               output_root, source_video, parallel):
    test_config.conversion.parallel_renditions = parallel
    fake_tools.configure(width=1920, height=1080)

    job = await orchestrator.convert(source_video, "abc")

    assert job.status == ConversionStatus.COMPLETED
    assert job.progress == 100
    assert job.error_message is None
    assert job.hw_accel_used == "software"
    assert [r.name for r in job.renditions] == ["1080p", "720p", "480p", "360p"]

    record = repository.find_by_id("abc")
    assert record.conversion_status == ConversionStatus.COMPLETED
    assert record.conversion_progress == 100
    assert record.playlist_url == f"{BASE_URL}/video/abc/playlist"
    assert record.encrypted is False

    lines = master_lines(output_root, "abc")
    assert lines[:2] == ["#EXTM3U", "#EXT-X-VERSION:3"]
    assert lines[2] == "#EXT-X-STREAM-INF:BANDWIDTH=5350000,RESOLUTION=1920x1080"
    assert lines[3] == f"{BASE_URL}/video/abc/playlist/1080p"
    assert len(lines) == 2 + 2 * 4

    sub = (output_root / "abc" / "720p.m3u8").read_text()
    assert f"{BASE_URL}/video/abc/segments/720p_000.ts" in sub

    assert not source_video.exists()
    assert len(fake_tools.encode_invocations()) == 4


@pytest.mark.asyncio
async def test_progress_history_is_monotonic(orchestrator, fake_tools, repository, source_video):
    fake_tools.configure(width=1280, height=720, steps=10)

    await orchestrator.convert(source_video, "abc")

    history = repository.history("abc")
    statuses = [r.conversion_status for r in history]
    progress = [r.conversion_progress for r in history]
    assert statuses[0] == ConversionStatus.IN_PROGRESS
    assert statuses[-1] == ConversionStatus.COMPLETED
    assert progress == sorted(progress)
    assert all(p <= 99 for p in progress[:-1])
    assert progress[-1] == 100


@pytest.mark.asyncio
async def test_small_source(orchestrator, fake_tools, output_root, source_video):
    fake_tools.configure(width=640, height=360)

    job = await orchestrator.convert(source_video, "small")

    assert [r.name for r in job.renditions] == ["480p", "360p"]
    assert len(master_lines(output_root, "small")) == 2 + 2 * 2


@pytest.mark.asyncio
async def test_unsupported_format(orchestrator, fake_tools, repository, output_root, tmp_path):
    document = tmp_path / "slides.pdf"
    document.write_bytes(b"%PDF-1.4")

    job = await orchestrator.convert(document, "doc")

    assert job.status == ConversionStatus.FAILED
    assert job.error_message == "Unsupported video file format: slides.pdf"
    assert repository.find_by_id("doc").conversion_status == ConversionStatus.FAILED
    assert fake_tools.invocations() == []
    assert not (output_root / "doc").exists()
    assert not document.exists()


@pytest.mark.asyncio
async def test_extension_check_is_case_insensitive(orchestrator, fake_tools, tmp_path):
    fake_tools.configure(width=640, height=360)
    source = tmp_path / "CLIP.MOV"
    source.write_bytes(b"\x00" * 64)

    job = await orchestrator.convert(source, "clip")

    assert job.status == ConversionStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize("parallel", [False, True], ids=["sequential", "parallel"])
async def test_encoder_failure_fails_job(orchestrator, test_config, fake_tools, repository,
                                         output_root, source_video, parallel):
    test_config.conversion.parallel_renditions = parallel
    fake_tools.configure(width=1280, height=720, fail_rendition="480p", step_delay=0.05)

    job = await orchestrator.convert(source_video, "abc")

    assert job.status == ConversionStatus.FAILED
    assert "480p" in job.error_message
    assert "No disk space" in job.error_message
    record = repository.find_by_id("abc")
    assert record.conversion_status == ConversionStatus.FAILED
    assert record.conversion_error == job.error_message
    assert not (output_root / "abc").exists()
    assert not source_video.exists()
    assert not orchestrator.registry.is_registered("abc")


@pytest.mark.asyncio
async def test_missing_sub_playlist_fails_job(orchestrator, fake_tools, output_root, source_video):
    fake_tools.configure(width=640, height=360, skip_playlist=["360p"])

    job = await orchestrator.convert(source_video, "abc")

    assert job.status == ConversionStatus.FAILED
    assert "360p" in job.error_message
    assert not (output_root / "abc").exists()


@pytest.mark.asyncio
async def test_cancel_unknown_video(orchestrator, repository):
    assert orchestrator.cancel("nothing-here") is False
    assert repository.find_by_id("nothing-here") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("parallel", [False, True], ids=["sequential", "parallel"])
async def test_cancel_running_conversion(orchestrator, test_config, fake_tools, repository,
                                         output_root, source_video, parallel):
    test_config.conversion.parallel_renditions = parallel
    fake_tools.configure(width=1920, height=1080, steps=200, step_delay=0.1)

    task = asyncio.create_task(orchestrator.convert(source_video, "abc"))
    for _ in range(200):
        if orchestrator.registry.processes("abc"):
            break
        await asyncio.sleep(0.05)

    assert orchestrator.cancel("abc") is True
    job = await asyncio.wait_for(task, timeout=15)

    assert job.status == ConversionStatus.CANCELLED
    assert job.error_message == "Conversion cancelled by user"
    assert repository.find_by_id("abc").conversion_status == ConversionStatus.CANCELLED
    assert not (output_root / "abc").exists()
    assert not source_video.exists()
    # The job is gone, so a second cancel has nothing to do
    assert orchestrator.cancel("abc") is False


@pytest.mark.asyncio
async def test_encrypted_conversion(orchestrator, fake_tools, repository, output_root, source_video):
    fake_tools.configure(width=640, height=360)
    key = SegmentEncryptor.generate_key()

    job = await orchestrator.convert(source_video, "secret", key)

    assert job.status == ConversionStatus.COMPLETED
    assert repository.find_by_id("secret").encrypted is True
    assert not (output_root / "secret_temp").exists()

    final = output_root / "secret"
    segment = final / "360p_000.ts"
    plain = SegmentEncryptor().decrypt_file(segment, key)
    assert plain.startswith(b"360p segment 0")
    assert segment.read_bytes()[12:] != plain

    sub = (final / "360p.m3u8").read_text()
    assert f"{BASE_URL}/video/secret/segments/360p_000.ts" in sub
    assert (final / "secret.m3u8").exists()


@pytest.mark.asyncio
async def test_invalid_key_is_rejected(orchestrator, fake_tools, repository, source_video):
    job = await orchestrator.convert(source_video, "abc", "not-a-key")

    assert job.status == ConversionStatus.FAILED
    assert "Invalid encryption key" in job.error_message
    assert fake_tools.invocations() == []


@pytest.mark.asyncio
async def test_encrypted_record_requires_key(orchestrator, fake_tools, repository, source_video):
    repository.save(VideoRecord(id="abc", encrypted=True))

    job = await orchestrator.convert(source_video, "abc")

    assert job.status == ConversionStatus.FAILED
    assert "key required" in job.error_message
    assert fake_tools.invocations() == []


@pytest.mark.asyncio
async def test_probe_fallback_drives_ladder(orchestrator, fake_tools, source_video):
    fake_tools.configure(ffprobe_fails=True, banner_resolution=None)

    job = await orchestrator.convert(source_video, "abc")

    # Default 854x480 source; the 854 side admits 720p
    assert [r.name for r in job.renditions] == ["720p", "480p", "360p"]
    assert job.status == ConversionStatus.COMPLETED


@pytest.mark.asyncio
async def test_cleanup_video_files(orchestrator, output_root):
    (output_root / "abc").mkdir()
    (output_root / "abc_temp").mkdir()

    assert orchestrator.cleanup_video_files("abc") is True
    assert list(output_root.iterdir()) == []
    assert orchestrator.cleanup_video_files("abc") is False
    assert orchestrator.get_output_directory() == output_root


class ProgressWritesFailRepository(InMemoryVideoRepository):
    """Accepts status changes but rejects every intermediate progress save."""

    def save(self, record):
        if (record.conversion_status == ConversionStatus.IN_PROGRESS
                and 0 < record.conversion_progress < 100):
            raise OSError("database unavailable")
        return super().save(record)


@pytest.mark.asyncio
async def test_failed_progress_save_does_not_stall_encoding(test_config, storage, command_builder,
                                                            fake_tools, output_root, source_video):
    fake_tools.configure(width=640, height=360, steps=10, stderr_padding=400_000)
    repository = ProgressWritesFailRepository()
    orchestrator = ConversionOrchestrator(
        repository,
        storage,
        config=test_config,
        process_manager=EncoderProcessManager(command_builder, encode_timeout=20),
    )

    job = await orchestrator.convert(source_video, "abc")

    assert job.status == ConversionStatus.COMPLETED
    assert repository.find_by_id("abc").conversion_progress == 100
    assert (output_root / "abc" / "abc.m3u8").exists()


@pytest.mark.asyncio
async def test_injected_config_drives_hardware_detection(repository, storage, fake_tools,
                                                         test_config, output_root):
    fake_tools.configure(encoders=["h264_nvenc"], working_encoders=["h264_nvenc"])
    config = SpillwayConfig()
    config.conversion.ffmpeg_path = str(fake_tools.ffmpeg)
    config.conversion.ffprobe_path = str(fake_tools.ffprobe)
    config.conversion.output_directory = str(output_root)
    config.hardware.enable_hw_accel = True

    orchestrator = ConversionOrchestrator(repository, storage, config=config)

    detector = orchestrator.hardware_detector
    assert detector is not get_hardware_detector()
    assert detector.hw_config is config.hardware
    assert detector.command_builder.ffmpeg_path == str(fake_tools.ffmpeg)
    assert detector.detect() == HWAccelType.NVENC


@pytest.mark.asyncio
async def test_second_conversion_of_same_video_is_refused(orchestrator, fake_tools, repository,
                                                          output_root, source_video):
    # Another job already holds this video
    assert orchestrator.registry.open("abc")

    job = await orchestrator.convert(source_video, "abc")

    assert job.status == ConversionStatus.FAILED
    assert "already being converted" in job.error_message
    assert repository.find_by_id("abc") is None
    assert source_video.exists()
    assert fake_tools.invocations() == []
    assert orchestrator.cancel("abc") is True
