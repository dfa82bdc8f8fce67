"""Tests for the upload authority client. All HTTP goes through httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from uploader.authorization import AuthorizationClient, UploadAuthorization, public_object_url
from uploader.errors import AuthorizationFailure, ConfirmationFailure


def _client(handler) -> AuthorizationClient:
    return AuthorizationClient("http://authority.test/", transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# request_upload_url
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_request_upload_url_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"url": "https://u", "key": "uploads/123-a.png"})

    result = await _client(handler).request_upload_url("a.png", "image/png")

    assert result == UploadAuthorization(url="https://u", key="uploads/123-a.png")
    assert seen["method"] == "POST"
    assert seen["url"] == "http://authority.test/get-upload-url"
    assert seen["body"] == {"filename": "a.png", "filetype": "image/png"}


@pytest.mark.asyncio
async def test_request_upload_url_server_error_includes_detail():
    def handler(request):
        return httpx.Response(500, json={"error": "Failed to generate upload URL"})

    with pytest.raises(AuthorizationFailure) as exc_info:
        await _client(handler).request_upload_url("a.png", "image/png")

    message = str(exc_info.value)
    assert message.startswith("Failed to get upload URL: Internal Server Error")
    assert "Failed to generate upload URL" in message


@pytest.mark.asyncio
async def test_request_upload_url_non_json_error():
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(AuthorizationFailure, match="Failed to get upload URL: Bad Gateway"):
        await _client(handler).request_upload_url("a.png", "image/png")


@pytest.mark.asyncio
async def test_request_upload_url_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(AuthorizationFailure, match="connection refused"):
        await _client(handler).request_upload_url("a.png", "image/png")


@pytest.mark.asyncio
async def test_request_upload_url_malformed_body():
    def handler(request):
        return httpx.Response(200, json={"url": "https://u"})

    with pytest.raises(AuthorizationFailure, match="malformed response"):
        await _client(handler).request_upload_url("a.png", "image/png")


# ---------------------------------------------------------------------------
# confirm_upload
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_confirm_upload_returns_image_url():
    def handler(request):
        assert request.url.path == "/confirm-upload"
        assert json.loads(request.content) == {"key": "uploads/123-a.png"}
        return httpx.Response(
            200,
            json={
                "success": True,
                "message": "Upload confirmed!",
                "imageUrl": "https://bucket.s3.amazonaws.com/uploads/123-a.png",
            },
        )

    url = await _client(handler).confirm_upload("uploads/123-a.png")

    assert url == "https://bucket.s3.amazonaws.com/uploads/123-a.png"


@pytest.mark.asyncio
async def test_confirm_upload_missing_object():
    def handler(request):
        return httpx.Response(404, json={"error": "Uploaded object not found"})

    with pytest.raises(ConfirmationFailure, match="Uploaded object not found"):
        await _client(handler).confirm_upload("uploads/123-a.png")


@pytest.mark.asyncio
@pytest.mark.parametrize("image_url", [None, "", 42])
async def test_confirm_upload_rejects_unusable_image_url(image_url):
    def handler(request):
        return httpx.Response(200, json={"success": True, "imageUrl": image_url})

    with pytest.raises(ConfirmationFailure, match="malformed response"):
        await _client(handler).confirm_upload("uploads/123-a.png")


@pytest.mark.asyncio
async def test_confirm_upload_transport_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out")

    with pytest.raises(ConfirmationFailure, match="timed out"):
        await _client(handler).confirm_upload("uploads/123-a.png")


# ---------------------------------------------------------------------------
# public_object_url
# ---------------------------------------------------------------------------


def test_public_url_from_configured_base():
    auth = UploadAuthorization(url="https://ignored", key="uploads/1-a.png")
    assert public_object_url(auth, "https://cdn.example.com/") == "https://cdn.example.com/uploads/1-a.png"


def test_public_url_strips_presigned_query():
    auth = UploadAuthorization(
        url="https://bucket.s3.amazonaws.com/uploads/1-a.png?X-Amz-Signature=abc&X-Amz-Expires=3600",
        key="uploads/1-a.png",
    )
    assert public_object_url(auth) == "https://bucket.s3.amazonaws.com/uploads/1-a.png"


def test_public_url_path_style():
    auth = UploadAuthorization(
        url="http://minio:9000/media/uploads/1-a.png?X-Amz-Signature=abc",
        key="uploads/1-a.png",
    )
    assert public_object_url(auth) == "http://minio:9000/media/uploads/1-a.png"


def test_public_url_falls_back_to_origin():
    auth = UploadAuthorization(url="https://u", key="uploads/123-a.png")
    assert public_object_url(auth) == "https://u/uploads/123-a.png"
