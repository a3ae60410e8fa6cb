"""Updater configuration loaded from environment variables."""

from __future__ import annotations

import platform as _platform
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def detect_platform() -> str:
    """Return the platform tag used to filter platform-specific files."""
    bits = "64" if sys.maxsize > 2**32 else "32"
    system = _platform.system().lower()
    if system.startswith("win"):
        return f"win{bits}"
    if system == "darwin":
        return "macosx"
    return f"{system}{bits}"


class Settings(BaseSettings):
    """Updater settings."""

    model_config = SettingsConfigDict(
        env_prefix="UPDATER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Paths
    root_dir: Path = Path(".")
    database_url: str = ""
    staging_dir: str = "update"
    index_filename: str = "index.json"

    # Workers and transport
    max_workers: int = Field(default=4, ge=1, le=32)
    http_timeout: float = Field(default=60.0, gt=0)

    # Upload credentials; the command driver prompts for a missing password.
    upload_username: str = ""
    upload_password: str = ""

    # Classification
    platform: str = Field(default_factory=detect_platform)
    match_full_history: bool = False

    # Files that a complete-site upload must never mark obsolete, per site.
    protected_files: dict[str, list[str]] = Field(
        default_factory=lambda: {"ImageJ": ["jars/tools.jar"]}
    )

    def resolved_database_url(self) -> str:
        """Return the database URL, defaulting to a SQLite file under the root."""
        if self.database_url:
            return self.database_url
        db_path = self.root_dir.resolve() / ".updater" / "updater.db"
        return f"sqlite+aiosqlite:///{db_path}"

    def ignored_top_level(self) -> set[str]:
        """Top-level names the local scan must skip."""
        return {self.staging_dir, ".updater"}
