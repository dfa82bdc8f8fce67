"""Command-line uploader and upload authority launcher."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import structlog

from shared.config import get_settings
from uploader.authorization import AuthorizationClient
from uploader.intake import candidate_from_path
from uploader.manager import UploadManager
from uploader.records import FileRecord, FileStatus, format_file_size
from uploader.transfer import ObjectTransfer


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


def _stderr_logger(*args) -> structlog.PrintLogger:
    # Resolve sys.stderr per logger so redirected streams are honoured.
    return structlog.PrintLogger(file=sys.stderr)


def _configure_logging(verbose: bool) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
        logger_factory=_stderr_logger,
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs on stderr")
def cli(verbose):
    """Media uploader CLI."""
    _configure_logging(verbose)


# --- Upload ---


class ProgressReporter:
    """Prints status changes and progress in 10% steps for every record."""

    def __init__(self, echo=click.echo):
        self.echo = echo
        self._seen: dict[str, tuple[FileStatus, int, int]] = {}

    def __call__(self, snapshot: tuple[FileRecord, ...]) -> None:
        for record in snapshot:
            step = record.progress_percent // 10
            state = (record.status, step, record.attempt)
            if self._seen.get(record.id) == state:
                continue
            self._seen[record.id] = state
            self.echo(self.describe(record))

    @staticmethod
    def describe(record: FileRecord) -> str:
        label = f"{record.name} ({format_file_size(record.size_bytes)})"
        if record.status is FileStatus.UPLOADING:
            return f"  {label}: uploading {record.progress_percent}%"
        if record.status is FileStatus.SUCCESS:
            return f"  {label}: uploaded -> {record.remote_url}"
        if record.status is FileStatus.ERROR:
            return f"  {label}: failed - {record.error_message}"
        return f"  {label}: pending"


@cli.command()
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--api-url", default=None, help="Upload authority base URL")
@click.option(
    "--confirm/--no-confirm",
    default=None,
    help="Confirm each upload with the authority instead of building the URL locally",
)
@click.option("--concurrency", type=int, default=None, help="Max simultaneous uploads (0 = no limit)")
@click.option("--public-url", default=None, help="Public base URL used when not confirming")
@click.option("--retry-prompt/--no-retry-prompt", default=True, help="Offer to retry failed uploads")
def upload(paths, api_url, confirm, concurrency, public_url, retry_prompt):
    """Upload image and video files to object storage."""
    settings = get_settings()
    ok = run_async(
        _upload(
            paths,
            api_url=api_url or settings.uploader_api_url,
            confirm=settings.uploader_confirm_uploads if confirm is None else confirm,
            concurrency=settings.uploader_max_concurrency if concurrency is None else concurrency,
            public_url=public_url or settings.uploader_public_url or None,
            retry_prompt=retry_prompt,
            timeout=settings.uploader_timeout_seconds,
        )
    )
    sys.exit(0 if ok else 1)


async def _upload(
    paths: tuple[Path, ...],
    *,
    api_url: str,
    confirm: bool,
    concurrency: int,
    public_url: str | None,
    retry_prompt: bool,
    timeout: float,
) -> bool:
    manager = UploadManager(
        AuthorizationClient(api_url, timeout=timeout),
        ObjectTransfer(timeout=timeout),
        confirm_uploads=confirm,
        public_url_base=public_url,
        max_concurrency=concurrency,
    )
    async with manager:
        manager.subscribe(ProgressReporter())
        result = manager.add_files(candidate_from_path(p) for p in paths)
        if result.message:
            click.echo(result.message, err=True)
        if not result.accepted:
            return False

        await manager.wait()
        failed = [r for r in manager.records() if r.status is FileStatus.ERROR]
        while failed and retry_prompt:
            again = await asyncio.to_thread(
                click.confirm, f"{len(failed)} upload(s) failed. Retry?", default=False
            )
            if not again:
                break
            for record in failed:
                manager.retry(record.id)
            await manager.wait()
            failed = [r for r in manager.records() if r.status is FileStatus.ERROR]

        succeeded = sum(1 for r in manager.records() if r.status is FileStatus.SUCCESS)
        click.echo(f"{succeeded}/{len(result.accepted)} file(s) uploaded.")
        return not failed and not result.rejections


# --- Upload authority ---


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", type=int, default=None, help="Port (defaults to API_PORT)")
def serve(host, port):
    """Run the upload authority HTTP service."""
    import uvicorn

    uvicorn.run(
        "modules.upload_authority.main:app",
        host=host,
        port=port or get_settings().api_port,
    )


@cli.command()
def setup():
    """Create the storage bucket if it doesn't exist."""
    from minio import Minio

    settings = get_settings()
    if not settings.storage_bucket:
        click.echo("  STORAGE_BUCKET is not set.", err=True)
        sys.exit(1)

    try:
        client = Minio(
            endpoint=settings.storage_endpoint,
            access_key=settings.storage_access_key,
            secret_key=settings.storage_secret_key,
            region=settings.storage_region,
            secure=settings.storage_secure,
        )
        if not client.bucket_exists(bucket_name=settings.storage_bucket):
            client.make_bucket(bucket_name=settings.storage_bucket)
            click.echo(f"  Created bucket: {settings.storage_bucket}")
        else:
            click.echo(f"  Bucket already exists: {settings.storage_bucket}")
    except Exception as e:
        click.echo(f"  Could not create bucket: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
