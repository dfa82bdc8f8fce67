"""Local preview handles for accepted files.

A preview handle is a locally resolvable reference to a file's bytes that a
UI can use before (and while) the file is uploaded. Path-backed files resolve
to a ``file://`` URI; in-memory files get a ``blob:`` URI that stays
resolvable through the registry until the handle is released.

Handles are owned by exactly one record and must be released exactly once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from uploader.errors import PreviewReleaseError

if TYPE_CHECKING:
    from uploader.records import CandidateFile

logger = structlog.get_logger()


@dataclass(frozen=True)
class PreviewHandle:
    """An acquired preview reference."""

    handle_id: str
    uri: str


class PreviewRegistry:
    """Tracks live preview handles and the sources they point at."""

    def __init__(self):
        self._live: dict[str, CandidateFile] = {}

    def acquire(self, candidate: CandidateFile) -> PreviewHandle:
        handle_id = uuid.uuid4().hex
        if candidate.path is not None:
            uri = Path(candidate.path).absolute().as_uri()
        else:
            uri = f"blob:{handle_id}"
        self._live[handle_id] = candidate
        return PreviewHandle(handle_id=handle_id, uri=uri)

    def resolve(self, handle: PreviewHandle) -> Path | bytes:
        """Return the path or bytes behind a live handle."""
        candidate = self._live.get(handle.handle_id)
        if candidate is None:
            raise PreviewReleaseError(f"Preview handle {handle.handle_id} is not live")
        if candidate.path is not None:
            return Path(candidate.path)
        return candidate.data or b""

    def release(self, handle: PreviewHandle) -> None:
        """Release a handle. Releasing an unknown or already released handle raises."""
        if self._live.pop(handle.handle_id, None) is None:
            raise PreviewReleaseError(f"Preview handle {handle.handle_id} released twice")
        logger.debug("preview_released", handle_id=handle.handle_id)

    def is_live(self, handle: PreviewHandle) -> bool:
        return handle.handle_id in self._live

    @property
    def live_count(self) -> int:
        return len(self._live)
