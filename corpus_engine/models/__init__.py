"""Data models module."""

from corpus_engine.models.annotation_session import (
    ALLOWED_TRANSITIONS,
    AnnotationSession,
    ExportEvent,
    SessionStatus,
)
from corpus_engine.models.document_upload import (
    DailyProcessingBucket,
    DocumentOutcome,
    DocumentStats,
    DocumentUpload,
    DuplicateDetail,
    ErrorDetail,
    UploadStatus,
)
from corpus_engine.models.requests import (
    AnnotationRequest,
    CreateSessionRequest,
    ExportSessionRequest,
    UpdateSessionRequest,
)
from corpus_engine.models.sentence import Annotation, CandidateRecord, CorpusRecord

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Annotation",
    "AnnotationRequest",
    "AnnotationSession",
    "CandidateRecord",
    "CorpusRecord",
    "CreateSessionRequest",
    "DailyProcessingBucket",
    "DocumentOutcome",
    "DocumentStats",
    "DocumentUpload",
    "DuplicateDetail",
    "ErrorDetail",
    "ExportEvent",
    "ExportSessionRequest",
    "SessionStatus",
    "UpdateSessionRequest",
    "UploadStatus",
]
