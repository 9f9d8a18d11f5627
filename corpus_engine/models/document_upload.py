"""Document tracking models for upload auditing and duplicate reporting."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class UploadStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class DuplicateDetail:
    """A row skipped because its text already exists in the corpus."""

    text: str
    existing_document_id: Optional[str]  # Upload batch of the matched sentence
    row_number: int
    existing_sentence_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "existing_document_id": self.existing_document_id,
            "existing_sentence_id": self.existing_sentence_id,
            "row_number": self.row_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DuplicateDetail":
        return cls(
            text=data["text"],
            existing_document_id=data.get("existing_document_id"),
            existing_sentence_id=data.get("existing_sentence_id"),
            row_number=data["row_number"],
        )


@dataclass(frozen=True)
class ErrorDetail:
    """A row that failed validation or persistence."""

    row_number: int
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row_number": self.row_number, "error": self.error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDetail":
        return cls(row_number=data["row_number"], error=data["error"])


@dataclass(frozen=True)
class DocumentUpload:
    """Tracking record for one upload attempt.

    Counts are only meaningful once ``status`` is terminal.
    """

    document_id: str
    user_id: str
    original_filename: str
    s3_key: str
    status: UploadStatus
    created_at: datetime
    updated_at: datetime
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    total_rows: int = 0
    successful_inserts: int = 0
    failed_inserts: int = 0
    duplicate_count: int = 0
    duplicates: List[DuplicateDetail] = field(default_factory=list)
    errors: List[ErrorDetail] = field(default_factory=list)
    processing_time_ms: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != UploadStatus.PROCESSING

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.document_id,
            "document_id": self.document_id,
            "user_id": self.user_id,
            "original_filename": self.original_filename,
            "s3_key": self.s3_key,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "total_rows": self.total_rows,
            "successful_inserts": self.successful_inserts,
            "failed_inserts": self.failed_inserts,
            "duplicate_count": self.duplicate_count,
            "duplicates": [d.to_dict() for d in self.duplicates],
            "errors": [e.to_dict() for e in self.errors],
            "processing_time_ms": self.processing_time_ms,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "DocumentUpload":
        return cls(
            document_id=data["document_id"],
            user_id=data["user_id"],
            original_filename=data["original_filename"],
            s3_key=data["s3_key"],
            status=UploadStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            file_size=data.get("file_size"),
            mime_type=data.get("mime_type"),
            total_rows=data.get("total_rows") or 0,
            successful_inserts=data.get("successful_inserts") or 0,
            failed_inserts=data.get("failed_inserts") or 0,
            duplicate_count=data.get("duplicate_count") or 0,
            duplicates=[DuplicateDetail.from_dict(d) for d in data.get("duplicates") or []],
            errors=[ErrorDetail.from_dict(e) for e in data.get("errors") or []],
            processing_time_ms=data.get("processing_time_ms"),
        )


@dataclass(frozen=True)
class DocumentOutcome:
    """Terminal values written by the single closing ledger update."""

    status: UploadStatus
    total_rows: int = 0
    successful_inserts: int = 0
    failed_inserts: int = 0
    duplicate_count: int = 0
    duplicates: List[DuplicateDetail] = field(default_factory=list)
    errors: List[ErrorDetail] = field(default_factory=list)
    processing_time_ms: Optional[int] = None


@dataclass(frozen=True)
class DocumentStats:
    """Aggregate statistics over the ledger."""

    total_documents: int
    total_sentences_processed: int
    total_successful_inserts: int
    total_duplicates: int
    total_errors: int
    completed_uploads: int
    failed_uploads: int
    processing_uploads: int


@dataclass(frozen=True)
class DailyProcessingBucket:
    """Uploads grouped by calendar day (UTC)."""

    day: str  # YYYY-MM-DD
    uploads: int
    sentences_processed: int
    duplicates_found: int
    successful_inserts: int
