#!/usr/bin/env python3
"""Runtime configuration for debtool.

Values come from ``DEBTOOL_*`` environment variables or a local ``.env``
file; command-line flags override them.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Compression = Literal["gzip", "xz", "zstd", "none"]


class Settings(BaseSettings):
    """Central settings shared by every command."""

    model_config = SettingsConfigDict(
        env_prefix="DEBTOOL_",
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    compression: Compression = Field(
        default="gzip",
        description="Compressor passed to dpkg-deb -Z when building.",
    )
    compression_level: Optional[int] = Field(
        default=None,
        ge=0,
        le=9,
        description="Compression level passed to dpkg-deb -z.",
    )
    use_fakeroot: bool = Field(
        default=True,
        description="Wrap dpkg-deb --build in fakeroot when not running as root.",
    )
    root_owner_group: bool = Field(
        default=True,
        description="Record every archive member as owned by root:root.",
    )
    log_level: str = Field(default="INFO", description="Logging level name.")
    admin_dir: Path = Field(
        default=Path("/var/lib/dpkg"),
        description="dpkg administrative directory queried by dpkg-query.",
    )
    apt_options: list[str] = Field(
        default_factory=list,
        description="Extra Key=Value options passed to apt-get and apt-cache with -o.",
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def dpkg_query_args(self) -> list[str]:
        """Leading dpkg-query arguments selecting the admin directory."""
        if self.admin_dir == Path("/var/lib/dpkg"):
            return ["dpkg-query"]
        return ["dpkg-query", f"--admindir={self.admin_dir}"]

    def apt_args(self) -> list[str]:
        """Flattened ``-o Key=Value`` pairs for apt tools."""
        args: list[str] = []
        for option in self.apt_options:
            args.extend(["-o", option])
        return args


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
