"""HTTP client for the upload authority (presigned URL issuance and confirmation)."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from uploader.errors import AuthorizationFailure, ConfirmationFailure

logger = structlog.get_logger()


@dataclass(frozen=True)
class UploadAuthorization:
    """Destination for one upload attempt: a presigned PUT URL and the object key."""

    url: str
    key: str


def _error_detail(resp: httpx.Response) -> str | None:
    """Pull the ``error`` field out of a JSON error body, if there is one."""
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return None


def public_object_url(authorization: UploadAuthorization, public_url_base: str | None = None) -> str:
    """Build the public URL of an uploaded object without a round trip.

    Uses ``<public_url_base>/<key>`` when a base is configured. Otherwise the
    presigned URL already addresses the object, so its query string is
    dropped; if its path does not end with the key, the key is appended to
    the URL's origin instead.
    """
    if public_url_base:
        return f"{public_url_base.rstrip('/')}/{authorization.key}"

    url = httpx.URL(authorization.url)
    if url.path.endswith("/" + authorization.key):
        return authorization.url.split("?", 1)[0]

    origin = f"{url.scheme}://{url.host}"
    if url.port:
        origin += f":{url.port}"
    return f"{origin}/{authorization.key}"


class AuthorizationClient:
    """Async client for the upload authority's endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def request_upload_url(self, filename: str, filetype: str) -> UploadAuthorization:
        """POST /get-upload-url for one file.

        Raises:
            AuthorizationFailure: On a non-2xx response, a malformed body or a
                transport error.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/get-upload-url",
                    json={"filename": filename, "filetype": filetype},
                )
        except httpx.RequestError as e:
            logger.error("upload_url_request_error", filename=filename, error=str(e))
            raise AuthorizationFailure(f"Failed to get upload URL: {str(e) or type(e).__name__}") from e

        if not resp.is_success:
            detail = _error_detail(resp)
            logger.error(
                "upload_url_http_error",
                filename=filename,
                status=resp.status_code,
                error=detail,
            )
            message = f"Failed to get upload URL: {resp.reason_phrase or resp.status_code}"
            if detail:
                message += f" ({detail})"
            raise AuthorizationFailure(message)

        try:
            data = resp.json()
            return UploadAuthorization(url=data["url"], key=data["key"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error("upload_url_malformed_response", filename=filename, body=resp.text[:200])
            raise AuthorizationFailure("Failed to get upload URL: malformed response") from e

    async def confirm_upload(self, key: str) -> str:
        """POST /confirm-upload and return the server-confirmed public URL."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/confirm-upload", json={"key": key})
        except httpx.RequestError as e:
            logger.error("confirm_upload_request_error", key=key, error=str(e))
            raise ConfirmationFailure(f"Failed to confirm upload: {str(e) or type(e).__name__}") from e

        if not resp.is_success:
            detail = _error_detail(resp)
            logger.error("confirm_upload_http_error", key=key, status=resp.status_code, error=detail)
            raise ConfirmationFailure(
                f"Failed to confirm upload: {detail or resp.reason_phrase or resp.status_code}"
            )

        try:
            image_url = resp.json()["imageUrl"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("confirm_upload_malformed_response", key=key, body=resp.text[:200])
            raise ConfirmationFailure("Failed to confirm upload: malformed response") from e

        if not isinstance(image_url, str) or not image_url:
            logger.error("confirm_upload_malformed_response", key=key, body=resp.text[:200])
            raise ConfirmationFailure("Failed to confirm upload: malformed response")
        return image_url
