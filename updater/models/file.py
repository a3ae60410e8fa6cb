"""File record models."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from updater.models.base import Base


class FileRow(Base):
    """Persisted state of one tracked file."""

    __tablename__ = "files"

    filename: Mapped[str] = mapped_column(Text, primary_key=True)
    update_site: Mapped[str | None] = mapped_column(String, nullable=True)
    remote_checksum: Mapped[str | None] = mapped_column(String, nullable=True)
    remote_timestamp: Mapped[str | None] = mapped_column(String, nullable=True)
    remote_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Checksum cache: reused when the live file's timestamp is unchanged.
    local_checksum: Mapped[str | None] = mapped_column(String, nullable=True)
    local_timestamp: Mapped[str | None] = mapped_column(String, nullable=True)
    executable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    platforms: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    removal_marked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    versions: Mapped[list[FileVersionRow]] = relationship(
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="FileVersionRow.position",
    )
    dependencies: Mapped[list[FileDependencyRow]] = relationship(
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="FileDependencyRow.position",
    )
    shadowed: Mapped[list[FileShadowRow]] = relationship(
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="FileShadowRow.site",
    )


class FileVersionRow(Base):
    """A previously published version of a file."""

    __tablename__ = "file_versions"

    filename: Mapped[str] = mapped_column(
        Text, ForeignKey("files.filename", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    checksum: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[str] = mapped_column(String, nullable=False)

    file: Mapped[FileRow] = relationship(back_populates="versions")


class FileDependencyRow(Base):
    """A dependency edge declared by a file."""

    __tablename__ = "file_dependencies"

    filename: Mapped[str] = mapped_column(
        Text, ForeignKey("files.filename", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    dependency: Mapped[str] = mapped_column(Text, nullable=False)
    requirement: Mapped[str] = mapped_column(String, nullable=False, default="")

    file: Mapped[FileRow] = relationship(back_populates="dependencies")


class FileShadowRow(Base):
    """A version of a file published by a site that another site shadows."""

    __tablename__ = "file_shadows"

    filename: Mapped[str] = mapped_column(
        Text, ForeignKey("files.filename", ondelete="CASCADE"), primary_key=True
    )
    site: Mapped[str] = mapped_column(String, primary_key=True)
    checksum: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[str] = mapped_column(String, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    file: Mapped[FileRow] = relationship(back_populates="shadowed")
