"""Byte transfer to object storage over a presigned PUT URL."""

from __future__ import annotations

from contextlib import aclosing
from typing import AsyncIterator, Callable

import httpx
import structlog

from uploader.errors import TransferFailure
from uploader.records import DEFAULT_CHUNK_SIZE, CandidateFile

logger = structlog.get_logger()

# Called with (bytes_sent, total_bytes); total may be None when unknown.
ProgressCallback = Callable[[int, "int | None"], None]


class ObjectTransfer:
    """Streams a file's raw bytes to a presigned URL, reporting upload progress."""

    def __init__(
        self,
        timeout: float = 30.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._transport = transport

    async def put(
        self,
        url: str,
        source: CandidateFile,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """PUT ``source`` to ``url``.

        Raises:
            TransferFailure: On a transport error or a non-2xx response.
        """
        total = source.size_bytes

        async def body() -> AsyncIterator[bytes]:
            sent = 0
            async with aclosing(source.iter_chunks(self.chunk_size)) as chunks:
                async for chunk in chunks:
                    yield chunk
                    # The previous chunk has been handed to the transport once we resume.
                    sent += len(chunk)
                    if on_progress is not None:
                        on_progress(sent, total)

        # Presigned PUTs reject chunked transfer encoding, so send an explicit length.
        headers = {"Content-Type": content_type, "Content-Length": str(total)}

        stream = body()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.put(url, content=stream, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "transfer_http_error",
                file=source.name,
                status=e.response.status_code,
                body=e.response.text[:200],
            )
            raise TransferFailure(f"Request failed with status code {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("transfer_request_error", file=source.name, error=str(e))
            raise TransferFailure(str(e) or "Failed to upload file") from e
        except OSError as e:
            logger.error("transfer_read_error", file=source.name, error=str(e))
            raise TransferFailure(f"Could not read {source.name}: {e.strerror or e}") from e
        finally:
            # The transport may stop reading early; close the source file now.
            await stream.aclose()

        logger.debug("transfer_complete", file=source.name, size=total)
