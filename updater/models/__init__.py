"""SQLAlchemy ORM models for the local file database."""

from updater.models.base import Base
from updater.models.file import FileDependencyRow, FileRow, FileShadowRow, FileVersionRow
from updater.models.site import UpdateSiteRow

__all__ = [
    "Base",
    "FileDependencyRow",
    "FileRow",
    "FileShadowRow",
    "FileVersionRow",
    "UpdateSiteRow",
]
