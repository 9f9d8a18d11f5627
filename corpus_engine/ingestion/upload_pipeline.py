"""End-to-end upload processing: parse, deduplicate, persist, record.

The tracking record is written in ``processing`` state before any work
starts and always receives exactly one terminal update, including when the
pipeline raises, times out or is cancelled.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from corpus_engine.clients import MinIOStorageClient
from corpus_engine.ingestion.bulk_persister import BatchError, BulkPersister
from corpus_engine.ingestion.duplicate_detection import DuplicateDetector
from corpus_engine.ingestion.record_parser import RecordParseError, parse_file
from corpus_engine.models import (
    CandidateRecord,
    DocumentOutcome,
    DuplicateDetail,
    ErrorDetail,
    UploadStatus,
)
from corpus_engine.services.document_tracking_service import DocumentTrackingService
from corpus_engine.stores import SentenceStore

logger = logging.getLogger(__name__)

# Row number used for errors that concern the whole batch
BATCH_ERROR_ROW = 0


class EmptyUploadError(Exception):
    """Raised when a file yields no usable rows."""

    pass


class UploadProcessingError(Exception):
    """Custom exception for upload pipeline failures."""

    pass


# Rejections caused by the uploaded file itself; re-raised unchanged
INPUT_REJECTIONS = (RecordParseError, EmptyUploadError)


@dataclass(frozen=True)
class UploadResult:
    """What the caller receives for one processed upload."""

    document_id: str
    status: UploadStatus
    s3_key: str
    total_rows: int
    inserted_count: int
    duplicates_found: int
    errors_found: int
    processing_time_ms: int
    duplicates: List[DuplicateDetail] = field(default_factory=list)
    errors: List[ErrorDetail] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "status": self.status.value,
            "s3_key": self.s3_key,
            "total_rows": self.total_rows,
            "inserted_count": self.inserted_count,
            "duplicates_found": self.duplicates_found,
            "errors_found": self.errors_found,
            "processing_time_ms": self.processing_time_ms,
            "duplicates": [d.to_dict() for d in self.duplicates],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class _Progress:
    """Counts gathered so far, so a failure can still record them."""

    total_rows: int = 0
    successful_inserts: int = 0
    failed_inserts: int = 0
    duplicates: List[DuplicateDetail] = field(default_factory=list)
    errors: List[ErrorDetail] = field(default_factory=list)
    total_failure: bool = False

    def outcome(self, status: UploadStatus, processing_time_ms: int) -> DocumentOutcome:
        return DocumentOutcome(
            status=status,
            total_rows=self.total_rows,
            successful_inserts=self.successful_inserts,
            failed_inserts=self.failed_inserts,
            duplicate_count=len(self.duplicates),
            duplicates=list(self.duplicates),
            errors=sorted(self.errors, key=lambda e: e.row_number),
            processing_time_ms=processing_time_ms,
        )


def remap_batch_errors(batch: List[CandidateRecord], errors: List[BatchError]) -> List[ErrorDetail]:
    """Translate positions within the attempted insert batch to file row numbers."""
    details = []
    for error in errors:
        if error.index is None or not 0 <= error.index < len(batch):
            row_number = BATCH_ERROR_ROW
        else:
            row_number = batch[error.index].row_number
        details.append(ErrorDetail(row_number=row_number, error=error.error))
    return details


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class UploadPipeline:
    """Coordinates the record parser, duplicate detector, bulk persister and ledger."""

    def __init__(
        self,
        sentence_store: SentenceStore,
        tracking: DocumentTrackingService,
        storage: Optional[MinIOStorageClient] = None,
        upload_prefix: str = "csv-uploads",
        timeout_seconds: float = 120.0,
    ):
        self._sentence_store = sentence_store
        self._tracking = tracking
        self._storage = storage
        self._upload_prefix = upload_prefix
        self._timeout_seconds = timeout_seconds
        self._detector = DuplicateDetector(sentence_store)
        self._persister = BulkPersister(sentence_store)

    def storage_key(self, document_id: str, filename: str, user_id: str, language: Optional[str]) -> str:
        return f"{self._upload_prefix}/{language or 'unspecified'}/{user_id}/{document_id}-{filename}"

    async def process_upload(
        self,
        file_bytes: bytes,
        filename: str,
        user_id: str,
        language: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UploadResult:
        """Process one uploaded file end to end.

        Args:
            file_bytes: Raw file content.
            filename: Declared filename; selects the parser.
            user_id: Owner of the upload and collector of its records.
            language: Language applied to rows with a blank language cell.
            mime_type: Declared content type of the raw file.

        Returns:
            UploadResult with counts and row-level details.

        Raises:
            RecordParseError: If the file format is unsupported or unreadable.
            EmptyUploadError: If no usable rows were found.
            UploadProcessingError: For any other failure, including timeout.
        """
        started = time.monotonic()
        document_id = str(uuid.uuid4())
        s3_key = self.storage_key(document_id, filename, user_id, language)

        await self._tracking.create_document_record(
            document_id=document_id,
            user_id=user_id,
            original_filename=filename,
            s3_key=s3_key,
            file_size=len(file_bytes),
            mime_type=mime_type,
        )

        progress = _Progress()
        try:
            await asyncio.wait_for(
                self._run(progress, document_id, file_bytes, filename, user_id, language, s3_key, mime_type),
                timeout=self._timeout_seconds,
            )
            status = UploadStatus.FAILED if progress.total_failure else UploadStatus.COMPLETED
            outcome = progress.outcome(status, _elapsed_ms(started))
            await self._tracking.update_document_record(document_id, outcome)
        except asyncio.CancelledError:
            await self._record_failure(document_id, progress, started, "Upload cancelled")
            raise
        except asyncio.TimeoutError as e:
            message = f"Upload timed out after {self._timeout_seconds:g}s"
            await self._record_failure(document_id, progress, started, message)
            raise UploadProcessingError(f"Failed to process {filename}: {message}") from e
        except INPUT_REJECTIONS as e:
            await self._record_failure(document_id, progress, started, str(e))
            raise
        except Exception as e:
            logger.exception(f"Upload {document_id} failed")
            await self._record_failure(document_id, progress, started, str(e) or type(e).__name__)
            raise UploadProcessingError(f"Failed to process {filename}: {e}") from e

        return UploadResult(
            document_id=document_id,
            status=outcome.status,
            s3_key=s3_key,
            total_rows=outcome.total_rows,
            inserted_count=outcome.successful_inserts,
            duplicates_found=outcome.duplicate_count,
            errors_found=outcome.failed_inserts,
            processing_time_ms=outcome.processing_time_ms,
            duplicates=outcome.duplicates,
            errors=outcome.errors,
        )

    async def _run(
        self,
        progress: _Progress,
        document_id: str,
        file_bytes: bytes,
        filename: str,
        user_id: str,
        language: Optional[str],
        s3_key: str,
        mime_type: Optional[str],
    ) -> None:
        candidates = await asyncio.to_thread(parse_file, file_bytes, filename, language)
        progress.total_rows = len(candidates)
        if not candidates:
            raise EmptyUploadError("No valid sentences found in the uploaded file")

        if self._storage is not None:
            await self._storage.put(s3_key, file_bytes, content_type=mime_type or "application/octet-stream")

        partition = await self._detector.partition(candidates)
        progress.duplicates = list(partition.duplicates)
        progress.errors = list(partition.errors)
        progress.failed_inserts = len(partition.errors)

        batch = await self._persister.insert_batch(partition.valid, document_id, collector_id=user_id)
        progress.successful_inserts = batch.inserted_count
        progress.failed_inserts += batch.failed_count
        progress.errors.extend(remap_batch_errors(partition.valid, batch.errors))
        progress.total_failure = batch.total_failure

    async def _record_failure(self, document_id: str, progress: _Progress, started: float, message: str) -> None:
        """Write the terminal ``failed`` update with whatever is known.

        Sentences the bulk insert committed before the failure are counted
        from the corpus itself, since the insert may not have returned.
        """
        progress.errors.append(ErrorDetail(row_number=BATCH_ERROR_ROW, error=message))
        try:
            progress.successful_inserts = await self._sentence_store.count_by_document(document_id)
        except Exception:
            logger.exception(f"Could not count stored sentences for upload {document_id}")
        progress.failed_inserts = max(progress.total_rows - progress.successful_inserts - len(progress.duplicates), 0)
        try:
            await self._tracking.update_document_record(
                document_id,
                progress.outcome(UploadStatus.FAILED, _elapsed_ms(started)),
            )
        except Exception:
            logger.exception(f"Could not record failure for upload {document_id}")

    async def delete_batch(self, document_id: str) -> int:
        """Delete every corpus record of one upload and its tracking record.

        Returns:
            Number of corpus records deleted.
        """
        deleted = await self._sentence_store.delete_by_document(document_id)
        await self._tracking.delete_document_record(document_id)
        logger.info(f"Deleted batch {document_id}: {deleted} sentences")
        return deleted
