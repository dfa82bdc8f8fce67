"""Exceptions raised while moving a file from intake to object storage."""

from __future__ import annotations


class UploadError(Exception):
    """Base class for failures scoped to a single file's upload attempt."""


class AuthorizationFailure(UploadError):
    """The upload authority was unreachable or refused to issue an upload URL."""


class TransferFailure(UploadError):
    """The byte transfer to object storage failed or was aborted."""


class ConfirmationFailure(UploadError):
    """The upload authority could not confirm the stored object."""


class PreviewReleaseError(RuntimeError):
    """A preview handle was released twice or was never acquired."""
