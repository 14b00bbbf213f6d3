"""Store configuration, env-driven.

Reads OCILAYOUT_* environment variables and an optional .env file through
pydantic-settings.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseSettings):
    """Settings for OCI layout stores and copies.

    Examples
    --------
    Override via environment::

        export OCILAYOUT_GC=false
        export OCILAYOUT_THROTTLE=8
        export OCILAYOUT_LOG_LEVEL=DEBUG

    Or via .env file::

        OCILAYOUT_DEFAULT_PLATFORM=linux/arm64
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="OCILAYOUT_",
        env_file_encoding="utf-8",
    )

    # Garbage collect modified layouts on close
    gc: bool = True

    # Concurrent blob/manifest writes per layout path (0 disables throttling)
    throttle: int = 3

    log_level: str = "INFO"

    # Platform used when resolving a manifest list, e.g. "linux/amd64"
    default_platform: str | None = None

    # Parallel blob transfers in copy_image
    copy_workers: int = 4


# Module-level singleton, import as `from ocilayout.config import config`
config = StoreConfig()
