"""Remote index schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator


class IndexDependency(BaseModel):
    """A dependency declared in a remote index entry."""

    filename: str = Field(min_length=1)
    requirement: str = ""


class IndexVersion(BaseModel):
    """A previously published version of a file."""

    checksum: str = Field(min_length=1)
    timestamp: str


class RemoteEntry(BaseModel):
    """One file as published by an update site.

    An entry without ``checksum`` is obsolete: the site only keeps its
    version history.
    """

    filename: str = Field(min_length=1, max_length=1000)
    checksum: str | None = None
    timestamp: str | None = None
    size: int = Field(default=0, ge=0)
    executable: bool = False
    platforms: list[str] = Field(default_factory=list)
    dependencies: list[IndexDependency] = Field(default_factory=list)
    previous: list[IndexVersion] = Field(default_factory=list)

    @field_validator("filename")
    @classmethod
    def filename_is_relative(cls, value: str) -> str:
        normalized = value.replace("\\", "/")
        if normalized.startswith("/") or ".." in normalized.split("/"):
            msg = f"Index filename must be a relative path inside the tree: {value!r}"
            raise ValueError(msg)
        return normalized

    @model_validator(mode="after")
    def current_version_is_complete(self) -> RemoteEntry:
        if self.checksum is not None and not self.timestamp:
            msg = f"{self.filename}: published version is missing its timestamp"
            raise ValueError(msg)
        if self.checksum is None and not self.previous:
            msg = f"{self.filename}: obsolete entry has no version history"
            raise ValueError(msg)
        return self


class RemoteIndex(BaseModel):
    """The complete index of one update site."""

    timestamp: str = "0"
    files: list[RemoteEntry] = Field(default_factory=list)
