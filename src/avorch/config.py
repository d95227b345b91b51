"""Configuration management for avorch."""

import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_concurrency() -> int:
    """Half the available cores, at least one engine process."""
    return max(1, (os.cpu_count() or 2) // 2)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AVORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # Directories
    output_dir: Path = Path("./outputs")
    temp_dir: Path = Path("./temp")

    # Codec engine
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout_s: float = 30.0

    # Encoding defaults
    default_quality: str = "high"
    default_resolution: str = "original"

    # Orchestration
    max_concurrent_jobs: int = Field(default_factory=_default_concurrency, ge=1)
    keep_partial_output: bool = False

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str | None = None) -> None:
    """Set up root logging for the server and the CLI."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# Global settings instance
settings = Settings()
