"""Data model for files moving through the uploader."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator

from uploader.previews import PreviewHandle

DEFAULT_CHUNK_SIZE = 64 * 1024


class FileStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CandidateFile:
    """A file offered for upload, from a picker, a drop event or a local path.

    Exactly one of ``path`` or ``data`` carries the bytes.
    """

    name: str
    mime_type: str
    size_bytes: int
    path: Path | None = None
    data: bytes | None = field(default=None, repr=False)

    @classmethod
    def from_bytes(cls, name: str, mime_type: str, data: bytes) -> CandidateFile:
        return cls(name=name, mime_type=mime_type, size_bytes=len(data), data=data)

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the raw file bytes in chunks."""
        if self.path is None:
            data = self.data or b""
            for start in range(0, len(data), chunk_size):
                yield data[start:start + chunk_size]
            return

        with open(self.path, "rb") as fh:
            while True:
                chunk = await asyncio.to_thread(fh.read, chunk_size)
                if not chunk:
                    break
                yield chunk


@dataclass(frozen=True)
class FileRecord:
    """Immutable snapshot of one accepted file's upload state.

    Updates produce a new value via ``dataclasses.replace``; construction
    rejects combinations that break the status invariants.
    """

    id: str
    name: str
    size_bytes: int
    mime_type: str
    preview: PreviewHandle
    status: FileStatus = FileStatus.PENDING
    progress_percent: int = 0
    remote_url: str | None = None
    error_message: str | None = None
    attempt: int = 0

    def __post_init__(self):
        if not 0 <= self.progress_percent <= 100:
            raise ValueError(f"progress_percent out of range: {self.progress_percent}")
        if (self.remote_url is not None) != (self.status is FileStatus.SUCCESS):
            raise ValueError("remote_url must be set exactly when status is success")
        if (self.error_message is not None) != (self.status is FileStatus.ERROR):
            raise ValueError("error_message must be set exactly when status is error")

    @property
    def can_retry(self) -> bool:
        return self.status is FileStatus.ERROR

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "mime_type": self.mime_type,
            "preview_uri": self.preview.uri,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "remote_url": self.remote_url,
            "error_message": self.error_message,
        }


def format_file_size(size_bytes: int) -> str:
    """Human-readable size, e.g. ``512 B``, ``1.5 KB``, ``3.2 MB``."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"
