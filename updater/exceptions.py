"""Updater exception types.

Convention:
- ``InputError``: bad command, unknown file or site, empty selection.
  Raised before any record is mutated; the command driver prints the
  message and exits non-zero.
- ``ConflictError``: staged actions that would leave the tree or a site
  inconsistent. Carries the structured conflict list.
- ``TransportError``: download, upload or login failures, always with the
  failing filename and the underlying cause.
- ``FatalStateError``: the local database could not be persisted after
  the live tree or a remote index was changed. Never retried automatically.

Staging warnings are not exceptions: they are logged and returned with the
staging result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from updater.services.conflicts import Conflict


class UpdaterError(Exception):
    """Base class for all updater errors."""


class InputError(UpdaterError, ValueError):
    """Raised for invalid user input; no state has been mutated."""


class InvalidRecordError(UpdaterError):
    """Raised when a file record has neither local nor remote state."""


class ActionTransitionError(UpdaterError):
    """Raised when an action is re-staged without clearing it first."""


class ConflictError(UpdaterError):
    """Raised when unresolved conflicts block a commit."""

    def __init__(self, conflicts: Sequence[Conflict]) -> None:
        self.conflicts = list(conflicts)
        lines = [f"{c.filename}: {c.reason}" for c in self.conflicts]
        super().__init__(f"{len(self.conflicts)} unresolved conflict(s):\n" + "\n".join(lines))


class TransportError(UpdaterError):
    """Raised when a download, upload or login fails."""

    def __init__(self, message: str, filename: str | None = None, cause: str | None = None) -> None:
        self.filename = filename
        self.cause = cause
        super().__init__(message)


class UploadLoginError(TransportError):
    """Raised when the upload session cannot be established."""


class ChecksumMismatchError(TransportError):
    """Raised when transferred content does not match the declared checksum."""


class OperationCancelled(UpdaterError):
    """Raised when the user cancels checksumming or a transfer."""


class FatalStateError(UpdaterError):
    """Raised when persisted states disagree and need manual reconciliation."""
