"""Pydantic models for upload authority request/response validation."""

from __future__ import annotations

from pydantic import BaseModel, Field


class UploadUrlRequest(BaseModel):
    filename: str = Field(min_length=1)
    filetype: str = Field(min_length=1)


class UploadUrlResponse(BaseModel):
    url: str
    key: str


class ConfirmUploadRequest(BaseModel):
    key: str = Field(min_length=1)


class ConfirmUploadResponse(BaseModel):
    success: bool = True
    message: str = "Upload confirmed!"
    imageUrl: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Standard health check response."""

    status: str = "ok"
