from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024

StagingMode = Literal["auto", "memory", "disk"]


class Settings(BaseSettings):
    """Centralised runtime configuration for the voice ingestion pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="VOICEINGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Voice Avatar Ingest"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    max_file_size_bytes: int = Field(default=10 * MIB, ge=1, description="Largest clip accepted into a batch.")
    max_duration_s: float = Field(default=300.0, gt=0, description="Longest clip accepted into a batch.")

    probe_signal_timeout_s: float = Field(
        default=2.0,
        gt=0,
        description="How long the probe waits for the engine's duration signal before querying.",
    )
    probe_query_timeout_s: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on the fallback duration query.",
    )
    ffprobe_binary: str = Field(default="ffprobe", description="ffprobe executable used as the decode engine.")

    staging_mode: StagingMode = Field(
        default="auto",
        description="memory pipes bytes to the engine, disk always stages a transient copy.",
    )
    staging_dir: Optional[Path] = Field(default=None, description="Transient staging area (defaults to the system tmp).")

    storage_base_path: Path = Field(default_factory=lambda: Path("data/voices"), description="Root for saved voices.")

    allowed_extensions: tuple[str, ...] = Field(
        default=("mp3", "wav", "ogg", "m4a", "mpeg"),
        description="Extensions offered by the file pickers.",
    )

    @property
    def resolved_staging_dir(self) -> Path:
        if self.staging_dir is not None:
            return self.staging_dir
        return Path(tempfile.gettempdir()) / "voiceingest"

    def is_allowed_name(self, filename: str) -> bool:
        _, dot, ext = filename.rpartition(".")
        if not dot:
            return False
        return ext.lower() in {item.lower().lstrip(".") for item in self.allowed_extensions}


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "VOICEINGEST_ENV": "VOICEINGEST_ENVIRONMENT",
        "VOICEINGEST_STORAGE_DIR": "VOICEINGEST_STORAGE_BASE_PATH",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    return Settings()


__all__ = ["MIB", "Settings", "StagingMode", "get_settings"]
