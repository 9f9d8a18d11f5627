"""Document tracking service for upload auditing.

Tracks every upload attempt to enable:
- Outcome reporting (inserted, duplicate and failed rows per upload)
- Duplicate reports (which rows matched which earlier batch)
- Processing history and aggregate statistics per owner
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..clients import MinIOStorageClient, StorageError
from ..models import (
    DailyProcessingBucket,
    DocumentOutcome,
    DocumentStats,
    DocumentUpload,
    UploadStatus,
)
from ..stores import DocumentUploadStore

logger = logging.getLogger(__name__)


class InvalidStatusTransitionError(Exception):
    """Raised when an update would move a document back to processing."""

    pass


class DocumentNotFoundError(Exception):
    """Raised when a tracking record does not exist."""

    pass


@dataclass(frozen=True)
class DocumentListing:
    """A tracking record with a fresh link to its raw file."""

    document: DocumentUpload
    download_url: Optional[str]


class DocumentTrackingService:
    """Service for the per-upload tracking ledger."""

    def __init__(
        self,
        document_store: DocumentUploadStore,
        storage: Optional[MinIOStorageClient] = None,
        url_ttl_seconds: int = 86400,
    ):
        """Initialize the document tracking service.

        Args:
            document_store: Persistence for tracking records.
            storage: Object storage used to sign raw-file links; optional.
            url_ttl_seconds: Lifetime of generated download links.
        """
        self._document_store = document_store
        self._storage = storage
        self._url_ttl_seconds = url_ttl_seconds

    async def create_document_record(
        self,
        document_id: str,
        user_id: str,
        original_filename: str,
        s3_key: str,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
    ) -> DocumentUpload:
        """Register an upload attempt in ``processing`` state with zero counters.

        Args:
            document_id: Identifier generated for this upload.
            user_id: Owner of the upload.
            original_filename: Declared source filename.
            s3_key: Storage key of the raw file.
            file_size: Size of the raw file in bytes.
            mime_type: Declared content type.

        Returns:
            The registered DocumentUpload.
        """
        now = datetime.now(timezone.utc)
        document = DocumentUpload(
            document_id=document_id,
            user_id=user_id,
            original_filename=original_filename,
            s3_key=s3_key,
            file_size=file_size,
            mime_type=mime_type,
            status=UploadStatus.PROCESSING,
            created_at=now,
            updated_at=now,
        )
        await self._document_store.insert(document)

        logger.info(f"Registered upload {document_id} ({original_filename}) for user {user_id}")
        return document

    async def update_document_record(
        self,
        document_id: str,
        outcome: DocumentOutcome,
    ) -> DocumentUpload:
        """Write the terminal status and all counts in a single update.

        A repeated call overwrites the previous outcome.

        Raises:
            InvalidStatusTransitionError: If ``outcome.status`` is processing.
            DocumentNotFoundError: If the record does not exist.
        """
        if outcome.status == UploadStatus.PROCESSING:
            raise InvalidStatusTransitionError(
                f"Document {document_id} cannot re-enter {UploadStatus.PROCESSING.value}"
            )

        updated = await self._document_store.apply_outcome(
            document_id,
            outcome,
            updated_at=datetime.now(timezone.utc),
        )
        if updated is None:
            raise DocumentNotFoundError(f"Document {document_id} not found for update")

        logger.info(
            f"Updated upload {document_id}: {outcome.status.value}, "
            f"{outcome.successful_inserts} inserted, {outcome.duplicate_count} duplicates, "
            f"{outcome.failed_inserts} failed"
        )
        return updated

    async def get_document_record(self, document_id: str) -> Optional[DocumentUpload]:
        """Get a tracking record by its ID."""
        return await self._document_store.get(document_id)

    async def _download_url(self, document: DocumentUpload) -> Optional[str]:
        if self._storage is None:
            return None
        try:
            return await self._storage.get_retrieval_url(document.s3_key, self._url_ttl_seconds)
        except StorageError as e:
            logger.warning(f"No download link for {document.document_id}: {e}")
            return None

    async def get_all_documents(self, user_id: Optional[str] = None) -> List[DocumentListing]:
        """All tracking records, newest first, each with a fresh download link.

        Args:
            user_id: Restrict to one owner; all owners when None.
        """
        documents = await self._document_store.list(user_id)
        urls = await asyncio.gather(*(self._download_url(document) for document in documents))
        return [
            DocumentListing(document=document, download_url=url)
            for document, url in zip(documents, urls)
        ]

    async def get_document_stats(self, user_id: Optional[str] = None) -> DocumentStats:
        return await self._document_store.stats(user_id)

    async def get_processing_history(
        self,
        days: int = 30,
        user_id: Optional[str] = None,
    ) -> List[DailyProcessingBucket]:
        """Per-day upload totals for the last ``days`` days, oldest first."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        return await self._document_store.daily_history(since, user_id)

    async def get_duplicate_report(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        """Uploads that contained duplicates, most duplicates first."""
        return await self._document_store.duplicate_report(user_id)

    async def delete_document_record(self, document_id: str) -> bool:
        """Delete a tracking record.

        Returns:
            True if the record was deleted, False if not found.
        """
        deleted = await self._document_store.delete(document_id)
        if deleted:
            logger.info(f"Deleted document tracking: {document_id}")
        return deleted
