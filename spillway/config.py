"""
Configuration management for Spillway
"""

import yaml
from pathlib import Path
from typing import Optional, List
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_EXTENSIONS = (
    ".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv", ".wmv", ".m4v",
)


class ServerConfig(BaseModel):
    base_url: str = "http://localhost:8081"  # Prefix for every published URL


class ConversionConfig(BaseModel):
    ffmpeg_path: str = "auto"
    ffprobe_path: str = "auto"
    output_directory: str = "content"
    segment_duration: int = 4
    encoding_preset: str = "veryfast"
    parallel_renditions: bool = False  # Encode all renditions at once
    probe_timeout: int = 30  # Seconds
    encode_timeout_minutes: int = 120
    supported_extensions: List[str] = Field(default_factory=lambda: list(SUPPORTED_EXTENSIONS))


class HardwareConfig(BaseModel):
    enable_hw_accel: bool = False
    test_timeout: int = 20  # Seconds allowed for each validation encode
    nvenc_preset: str = "p4"
    qsv_preset: str = "faster"
    vaapi_device: str = "/dev/dri/renderD128"


class PlaylistConfig(BaseModel):
    absolute_urls: bool = True  # Master entries as full URLs instead of relative names


class ProgressConfig(BaseModel):
    persist_threshold: int = 5  # Minimum percentage change before saving


class WorkerConfig(BaseModel):
    max_workers: int = 2
    queue_capacity: int = 10


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"
    file: Optional[str] = None


class SpillwayConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SPILLWAY_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    playlist: PlaylistConfig = Field(default_factory=PlaylistConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    workers: WorkerConfig = Field(default_factory=WorkerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment wins over them
        return env_settings, init_settings, file_secret_settings

    @property
    def output_root(self) -> Path:
        return Path(self.conversion.output_directory)


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "spillway.yaml",
        Path.cwd() / "spillway.yml",
        Path.cwd() / "config" / "spillway.yaml",
        Path.home() / ".config" / "spillway" / "spillway.yaml",
        Path("/etc/spillway/spillway.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> SpillwayConfig:
    """
    Load configuration from YAML file or use defaults.

    Environment variables (SPILLWAY_<SECTION>__<KEY>) take precedence over
    values read from the file.
    """
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return SpillwayConfig(**yaml_data)

    return SpillwayConfig()


# Global config instance
_config: Optional[SpillwayConfig] = None


def get_config() -> SpillwayConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: SpillwayConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
