"""Shared test fixtures for the uploader test suite.

Provides in-process stand-ins for the upload authority and the object
transfer channel so lifecycle tests can run without a network or a bucket.
"""

from __future__ import annotations

import asyncio

import pytest

from uploader.authorization import UploadAuthorization
from uploader.errors import AuthorizationFailure, TransferFailure
from uploader.previews import PreviewRegistry
from uploader.records import CandidateFile


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeAuthorizer:
    """Stands in for AuthorizationClient.

    ``outcomes`` maps a filename to a list of per-call results; each entry is
    either an ``UploadAuthorization`` or an exception to raise. Files without
    scripted outcomes get ``https://u`` / ``uploads/123-<name>``.
    """

    def __init__(self, outcomes: dict | None = None):
        self.outcomes = outcomes or {}
        self.calls: list[tuple[str, str]] = []
        self.confirmed: list[str] = []
        self.confirm_error: Exception | None = None

    async def request_upload_url(self, filename: str, filetype: str) -> UploadAuthorization:
        self.calls.append((filename, filetype))
        await asyncio.sleep(0)
        scripted = self.outcomes.get(filename)
        if scripted:
            outcome = scripted.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return UploadAuthorization(url="https://u", key=f"uploads/123-{filename}")

    async def confirm_upload(self, key: str) -> str:
        self.confirmed.append(key)
        if self.confirm_error is not None:
            raise self.confirm_error
        return f"https://bucket.s3.amazonaws.com/{key}"


class FakeTransfer:
    """Stands in for ObjectTransfer.

    ``plans`` maps a filename to a list of per-call plans. A plan is a dict
    with ``progress`` (list of ``(sent, total)`` pairs to report) and an
    optional ``error`` raised after reporting. Unplanned files report 50% and
    100% and succeed. ``gates`` maps a filename to an ``asyncio.Event`` the
    transfer waits on before finishing.
    """

    def __init__(self, plans: dict | None = None):
        self.plans = plans or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str, str]] = []

    async def put(self, url, source, content_type, on_progress=None) -> None:
        self.calls.append((url, source.name, content_type))
        scripted = self.plans.get(source.name)
        if scripted:
            plan = scripted.pop(0)
        else:
            plan = {"progress": [(source.size_bytes // 2, source.size_bytes), (source.size_bytes, source.size_bytes)]}

        for sent, total in plan.get("progress", []):
            await asyncio.sleep(0)
            if on_progress is not None:
                on_progress(sent, total)

        gate = self.gates.get(source.name)
        if gate is not None:
            await gate.wait()

        if plan.get("error") is not None:
            raise plan["error"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def previews():
    return PreviewRegistry()


@pytest.fixture
def fake_authorizer():
    return FakeAuthorizer()


@pytest.fixture
def fake_transfer():
    return FakeTransfer()


@pytest.fixture
def make_candidate():
    """Factory for in-memory candidate files."""

    def _make(name: str = "a.png", mime_type: str = "image/png", size: int = 1000) -> CandidateFile:
        # Large sizes are declared without materialising the bytes.
        data = b"x" * size if size <= 1024 * 1024 else None
        return CandidateFile(name=name, mime_type=mime_type, size_bytes=size, data=data)

    return _make


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_failure(message: str = "Failed to get upload URL: Internal Server Error") -> AuthorizationFailure:
    return AuthorizationFailure(message)


def transfer_failure(message: str = "Network Error") -> TransferFailure:
    return TransferFailure(message)
