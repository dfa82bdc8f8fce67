"""Upload lifecycle manager.

Owns the set of accepted files and drives each one through
``pending -> uploading -> success | error``, with user-initiated retry from
``error``. Every upload attempt runs as its own asyncio task:

    1. ask the upload authority for a presigned PUT URL
    2. stream the bytes to object storage, reporting progress
    3. resolve the public URL (server confirmation or built locally)

Failures are scoped to the record they belong to. Observers receive an
immutable snapshot of every record after each change.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from functools import partial
from typing import Callable, Iterable

import structlog

from uploader.authorization import AuthorizationClient, public_object_url
from uploader.errors import UploadError
from uploader.intake import IntakeResult, validate_candidates
from uploader.previews import PreviewRegistry
from uploader.records import CandidateFile, FileRecord, FileStatus
from uploader.transfer import ObjectTransfer

logger = structlog.get_logger()

DEFAULT_ERROR_MESSAGE = "Failed to upload file"

Snapshot = tuple[FileRecord, ...]
Subscriber = Callable[[Snapshot], None]


class _ProgressTracker:
    """Turns cumulative byte counts into a non-decreasing percentage."""

    def __init__(self, size_bytes: int):
        self.size_bytes = size_bytes
        self.percent = 0

    def update(self, sent: int, total: int | None) -> int:
        total = total or self.size_bytes
        if total > 0:
            # round half up: floor(sent * 100 / total + 0.5)
            computed = (sent * 200 + total) // (2 * total)
        else:
            computed = 0
        # Transports may report a smaller cumulative value; clamp instead of regressing.
        self.percent = min(100, max(self.percent, computed))
        return self.percent


class UploadManager:
    """Tracks accepted files and runs their uploads concurrently."""

    def __init__(
        self,
        authorizer: AuthorizationClient,
        transfer: ObjectTransfer,
        previews: PreviewRegistry | None = None,
        *,
        confirm_uploads: bool = False,
        public_url_base: str | None = None,
        max_concurrency: int = 0,
    ):
        self.authorizer = authorizer
        self.transfer = transfer
        self.previews = previews or PreviewRegistry()
        self.confirm_uploads = confirm_uploads
        self.public_url_base = public_url_base
        self.rejection_message: str | None = None

        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None
        self._records: dict[str, FileRecord] = {}
        self._sources: dict[str, CandidateFile] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._issued_ids: set[str] = set()
        self._subscribers: list[Subscriber] = []
        self._closed = False

    async def __aenter__(self) -> UploadManager:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def records(self) -> Snapshot:
        """Current state of every record, in intake order."""
        return tuple(self._records.values())

    def get(self, record_id: str) -> FileRecord | None:
        return self._records.get(record_id)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.records()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning("subscriber_error", error=str(e), exc_info=True)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add_files(self, candidates: Iterable[CandidateFile]) -> IntakeResult:
        """Validate a batch, append the accepted files and start uploading them.

        Must be called from a running event loop.
        """
        if self._closed:
            raise RuntimeError("UploadManager is closed")

        result = validate_candidates(candidates, self.previews, new_id=self._new_id)
        self.rejection_message = result.message

        for record in result.accepted:
            self._records[record.id] = record
            self._sources[record.id] = result.sources[record.id]
        self._notify()

        for record in result.accepted:
            self._start(record.id)

        logger.info(
            "files_added",
            accepted=len(result.accepted),
            rejected=len(result.rejections),
        )
        return result

    def retry(self, record_id: str) -> bool:
        """Restart the full upload protocol for a failed record.

        Returns False (and does nothing) unless the record is in ``error``.
        """
        record = self._records.get(record_id)
        if self._closed or record is None or not record.can_retry:
            logger.debug("retry_ignored", file_id=record_id)
            return False

        logger.info("upload_retry", file_id=record_id, file=record.name, attempt=record.attempt + 1)
        self._start(record_id)
        return True

    def remove(self, record_id: str) -> bool:
        """Drop a record and release its preview.

        An in-flight attempt keeps running; its results are discarded.
        """
        record = self._records.pop(record_id, None)
        if record is None:
            return False

        self._sources.pop(record_id, None)
        self.previews.release(record.preview)
        logger.info("file_removed", file_id=record_id, status=record.status.value)
        self._notify()
        return True

    async def wait(self) -> None:
        """Wait until no upload attempt is in flight."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Tear down: abandon in-flight attempts and release every preview once."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._tasks.values())
        try:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            released = 0
            for record in self._records.values():
                self.previews.release(record.preview)
                released += 1
            self._records.clear()
            self._sources.clear()
            self._subscribers.clear()
            logger.info("upload_manager_closed", cancelled=len(tasks), released=released)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        record_id = uuid.uuid4().hex
        while record_id in self._issued_ids:
            record_id = uuid.uuid4().hex
        self._issued_ids.add(record_id)
        return record_id

    def _start(self, record_id: str) -> None:
        record = self._records[record_id]
        attempt = record.attempt + 1
        self._records[record_id] = replace(
            record,
            status=FileStatus.UPLOADING,
            progress_percent=0,
            remote_url=None,
            error_message=None,
            attempt=attempt,
        )
        self._notify()

        task = asyncio.create_task(self._run_attempt(record_id, attempt), name=f"upload-{record_id}")
        self._tasks[record_id] = task
        task.add_done_callback(partial(self._task_done, record_id))

    def _task_done(self, record_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(record_id) is task:
            del self._tasks[record_id]

    def _update(self, record_id: str, attempt: int, **changes) -> bool:
        """Apply changes to a record if it still exists and ``attempt`` is current."""
        record = self._records.get(record_id)
        if record is None or record.attempt != attempt:
            logger.debug("stale_update_discarded", file_id=record_id, attempt=attempt)
            return False

        updated = replace(record, **changes)
        if updated != record:
            self._records[record_id] = updated
            self._notify()
        return True

    async def _run_attempt(self, record_id: str, attempt: int) -> None:
        if self._semaphore is None:
            await self._attempt(record_id, attempt)
            return
        async with self._semaphore:
            await self._attempt(record_id, attempt)

    async def _attempt(self, record_id: str, attempt: int) -> None:
        source = self._sources.get(record_id)
        record = self._records.get(record_id)
        if source is None or record is None or record.attempt != attempt:
            return

        log = logger.bind(file_id=record_id, file=source.name, attempt=attempt)
        log.info("upload_started", size=source.size_bytes, mime_type=source.mime_type)

        tracker = _ProgressTracker(source.size_bytes)

        def on_progress(sent: int, total: int | None) -> None:
            self._update(record_id, attempt, progress_percent=tracker.update(sent, total))

        try:
            authorization = await self.authorizer.request_upload_url(source.name, source.mime_type)
            await self.transfer.put(
                authorization.url, source, source.mime_type, on_progress=on_progress
            )
            if self.confirm_uploads:
                remote_url = await self.authorizer.confirm_upload(authorization.key)
            else:
                remote_url = public_object_url(authorization, self.public_url_base)

            self._update(
                record_id,
                attempt,
                status=FileStatus.SUCCESS,
                progress_percent=100,
                remote_url=remote_url,
            )
        except UploadError as e:
            log.warning("upload_failed", error=str(e), error_type=type(e).__name__)
            self._fail(record_id, attempt, str(e))
            return
        except Exception as e:
            log.error("upload_crashed", error=str(e), exc_info=True)
            self._fail(record_id, attempt, str(e))
            return

        log.info("upload_succeeded", key=authorization.key, url=remote_url)

    def _fail(self, record_id: str, attempt: int, message: str) -> None:
        self._update(
            record_id,
            attempt,
            status=FileStatus.ERROR,
            progress_percent=0,
            error_message=message or DEFAULT_ERROR_MESSAGE,
        )
