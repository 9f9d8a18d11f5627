"""Command-line entry point for uploads and ledger reports."""

import asyncio
import json
import mimetypes
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import typer

from corpus_engine.clients import MinIOStorageClient, StorageError
from corpus_engine.config import AppConfig, configure_logging, get_config
from corpus_engine.ingestion import EmptyUploadError, RecordParseError, UploadPipeline
from corpus_engine.models import ExportSessionRequest
from corpus_engine.services import (
    AnnotationSessionService,
    DocumentTrackingService,
    SessionNotFoundError,
    SessionPolicyError,
)
from corpus_engine.stores import Stores, open_stores

app = typer.Typer(help="Bias corpus ingestion engine (upload files, inspect the upload ledger, export sessions).")


def _storage_client(config: AppConfig) -> Optional[MinIOStorageClient]:
    if not config.storage.enabled:
        return None
    return MinIOStorageClient(
        endpoint=config.storage.endpoint,
        access_key=config.storage.access_key,
        secret_key=config.storage.secret_key,
        bucket=config.storage.bucket,
        secure=config.storage.secure,
        public_endpoint=config.storage.public_endpoint,
    )


def _tracking_service(
    config: AppConfig,
    stores: Stores,
    storage: Optional[MinIOStorageClient] = None,
) -> DocumentTrackingService:
    return DocumentTrackingService(
        stores.documents,
        storage=storage,
        url_ttl_seconds=config.export.url_ttl_seconds,
    )


def _session_service(
    config: AppConfig,
    stores: Stores,
    storage: Optional[MinIOStorageClient] = None,
) -> AnnotationSessionService:
    return AnnotationSessionService(
        stores.sessions,
        stores.sentences,
        stores.users,
        storage=storage,
        url_ttl_seconds=config.export.url_ttl_seconds,
        export_prefix=config.export.session_export_prefix,
        exclusive_across_sessions=config.export.exclusive_across_sessions,
    )


def _load_config() -> AppConfig:
    config = get_config()
    configure_logging(config)
    return config


async def _upload(config: AppConfig, path: Path, user: str, language: Optional[str]) -> dict:
    stores = await open_stores(config)
    try:
        storage = _storage_client(config)
        pipeline = UploadPipeline(
            stores.sentences,
            _tracking_service(config, stores, storage),
            storage=storage,
            upload_prefix=config.ingestion.upload_prefix,
            timeout_seconds=config.ingestion.timeout_seconds,
        )
        result = await pipeline.process_upload(
            path.read_bytes(),
            path.name,
            user_id=user,
            language=language,
            mime_type=mimetypes.guess_type(path.name)[0],
        )
        return result.to_response()
    finally:
        await stores.close()


@app.command()
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or XLSX file to ingest."),
    user: str = typer.Option(..., "--user", help="Owner of the upload."),
    language: Optional[str] = typer.Option(None, help="Language for rows with a blank language cell."),
) -> None:
    """Parse, deduplicate and store one file, then print the outcome as JSON."""
    config = _load_config()
    try:
        response = asyncio.run(_upload(config, path, user, language))
    except (RecordParseError, EmptyUploadError) as e:
        typer.echo(f"rejected: {e}", err=True)
        raise typer.Exit(code=2)
    typer.echo(json.dumps(response, indent=2))


async def _stats(config: AppConfig, user: Optional[str]) -> dict:
    stores = await open_stores(config)
    try:
        stats = await _tracking_service(config, stores).get_document_stats(user)
        return asdict(stats)
    finally:
        await stores.close()


@app.command()
def stats(user: Optional[str] = typer.Option(None, "--user", help="Restrict to one owner.")) -> None:
    """Print aggregate upload statistics."""
    config = _load_config()
    typer.echo(json.dumps(asyncio.run(_stats(config, user)), indent=2))


async def _history(config: AppConfig, days: int, user: Optional[str]) -> list:
    stores = await open_stores(config)
    try:
        buckets = await _tracking_service(config, stores).get_processing_history(days, user)
        return [asdict(bucket) for bucket in buckets]
    finally:
        await stores.close()


@app.command()
def history(
    days: int = typer.Option(30, help="How many days back to report."),
    user: Optional[str] = typer.Option(None, "--user", help="Restrict to one owner."),
) -> None:
    """Print per-day upload totals."""
    config = _load_config()
    typer.echo(json.dumps(asyncio.run(_history(config, days, user)), indent=2))


async def _export_session(
    config: AppConfig,
    session_id: str,
    user: str,
    sentence_ids: Optional[List[str]],
    file_name: Optional[str],
) -> dict:
    stores = await open_stores(config)
    try:
        service = _session_service(config, stores, _storage_client(config))
        request = ExportSessionRequest(sentence_ids=sentence_ids or None, file_name=file_name)
        result = await service.export_session(session_id, user, request)
        response = asdict(result)
        response["exported_at"] = result.exported_at.isoformat()
        return response
    finally:
        await stores.close()


@app.command("export-session")
def export_session(
    session_id: str = typer.Argument(..., help="Session to export."),
    user: str = typer.Option(..., "--user", help="Owner of the session."),
    sentence: Optional[List[str]] = typer.Option(None, "--sentence", help="Export only these sentence ids."),
    file_name: Optional[str] = typer.Option(None, "--file-name", help="Name of the export file."),
) -> None:
    """Export the session's unexported sentences and print the download link."""
    config = _load_config()
    try:
        response = asyncio.run(_export_session(config, session_id, user, sentence, file_name))
    except (SessionNotFoundError, SessionPolicyError, StorageError) as e:
        typer.echo(f"export failed: {e}", err=True)
        raise typer.Exit(code=2)
    typer.echo(json.dumps(response, indent=2))
