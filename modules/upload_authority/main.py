"""Upload authority: FastAPI service issuing presigned upload URLs."""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modules.upload_authority.models import (
    ConfirmUploadRequest,
    ConfirmUploadResponse,
    ErrorResponse,
    HealthResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)
from modules.upload_authority.storage import UploadSigner
from shared.config import get_settings, parse_list

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Upload Authority", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=parse_list(get_settings().cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

signer: UploadSigner | None = None

_ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.on_event("startup")
async def startup():
    global signer
    signer = UploadSigner(get_settings())
    logger.info("upload_authority_ready", bucket=signer.bucket or None)


@app.post("/get-upload-url", response_model=UploadUrlResponse, responses=_ERROR_RESPONSES)
async def get_upload_url(req: UploadUrlRequest):
    """Issue a time-limited URL that allows exactly one PUT of the named file."""
    if signer is None:
        return _error(503, "Service not ready")

    try:
        url, key = signer.presign_upload(req.filename)
    except Exception as e:
        logger.error(
            "upload_url_error",
            filename=req.filename,
            filetype=req.filetype,
            error=str(e),
            exc_info=True,
        )
        return _error(500, "Failed to generate upload URL")

    logger.info("upload_url_issued", key=key, filetype=req.filetype)
    return UploadUrlResponse(url=url, key=key)


@app.post("/confirm-upload", response_model=ConfirmUploadResponse, responses=_ERROR_RESPONSES)
async def confirm_upload(req: ConfirmUploadRequest):
    """Return the public URL for an uploaded object, checking that it exists first."""
    if signer is None:
        return _error(503, "Service not ready")

    try:
        if signer.settings.verify_uploads and not signer.object_exists(req.key):
            logger.warning("confirm_upload_missing_object", key=req.key)
            return _error(404, "Uploaded object not found")
    except Exception as e:
        logger.error("confirm_upload_error", key=req.key, error=str(e), exc_info=True)
        return _error(500, "Failed to confirm upload")

    logger.info("upload_confirmed", key=req.key)
    return ConfirmUploadResponse(imageUrl=signer.public_url(req.key))


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok")
