"""File intake: type/size policy and initial lifecycle records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import structlog

from uploader.previews import PreviewRegistry
from uploader.records import CandidateFile, FileRecord, FileStatus

logger = structlog.get_logger()

MAX_FILE_SIZE = 15 * 1024 * 1024  # 15MB

ALLOWED_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "video/mp4",
    "video/quicktime",
})

REASON_UNSUPPORTED_TYPE = "unsupported type"
REASON_TOO_LARGE = "exceeds 15MB limit"

MIME_MAP = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "csv": "text/csv",
    "json": "application/json",
    "zip": "application/zip",
}


@dataclass(frozen=True)
class Rejection:
    name: str
    reason: str

    def __str__(self) -> str:
        return f"{self.name} ({self.reason})"


@dataclass
class IntakeResult:
    """Outcome of one intake batch."""

    accepted: list[FileRecord] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)
    sources: dict[str, CandidateFile] = field(default_factory=dict, repr=False)

    @property
    def message(self) -> str | None:
        if not self.rejections:
            return None
        return "Some files were not added: " + ", ".join(str(r) for r in self.rejections)


def guess_mime_type(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return MIME_MAP.get(ext, "application/octet-stream")


def candidate_from_path(path: str | Path) -> CandidateFile:
    """Build a candidate from a local file, deriving the MIME type from its extension."""
    path = Path(path)
    return CandidateFile(
        name=path.name,
        mime_type=guess_mime_type(path.name),
        size_bytes=path.stat().st_size,
        path=path,
    )


def check_candidate(candidate: CandidateFile) -> str | None:
    """Return the rejection reason for a candidate, or None if it is acceptable."""
    if candidate.mime_type not in ALLOWED_TYPES:
        return REASON_UNSUPPORTED_TYPE
    if candidate.size_bytes > MAX_FILE_SIZE:
        return REASON_TOO_LARGE
    return None


def validate_candidates(
    candidates: Iterable[CandidateFile],
    previews: PreviewRegistry,
    new_id: Callable[[], str] = lambda: uuid.uuid4().hex,
) -> IntakeResult:
    """Partition candidates into pending records and rejections.

    Rejected candidates never block the rest of the batch.
    """
    result = IntakeResult()
    for candidate in candidates:
        reason = check_candidate(candidate)
        if reason is not None:
            result.rejections.append(Rejection(candidate.name, reason))
            continue

        record_id = new_id()
        result.sources[record_id] = candidate
        result.accepted.append(
            FileRecord(
                id=record_id,
                name=candidate.name,
                size_bytes=candidate.size_bytes,
                mime_type=candidate.mime_type,
                preview=previews.acquire(candidate),
                status=FileStatus.PENDING,
                progress_percent=0,
            )
        )

    if result.rejections:
        logger.info(
            "files_rejected",
            count=len(result.rejections),
            files=[str(r) for r in result.rejections],
        )
    return result
