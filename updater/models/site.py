"""Update site model."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from updater.models.base import Base


class UpdateSiteRow(Base):
    """A registered remote update site."""

    __tablename__ = "update_sites"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    upload_host: Mapped[str | None] = mapped_column(Text, nullable=True)
    upload_directory: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[str] = mapped_column(String, nullable=False, default="0")
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
