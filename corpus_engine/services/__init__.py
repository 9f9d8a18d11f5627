"""Ledger services for uploads and annotation sessions."""

from corpus_engine.services.annotation_session_service import (
    AnnotationSessionService,
    ExportNotFoundError,
    ExportResult,
    RegeneratedExportUrl,
    SentenceNotFoundError,
    SessionNotFoundError,
    SessionPolicyError,
    SessionStats,
    SessionWithSentences,
    UserSessionStats,
)
from corpus_engine.services.document_tracking_service import (
    DocumentListing,
    DocumentNotFoundError,
    DocumentTrackingService,
    InvalidStatusTransitionError,
)
from corpus_engine.services.export_renderer import EXPORT_COLUMNS, render_export_csv

__all__ = [
    "AnnotationSessionService",
    "DocumentListing",
    "DocumentNotFoundError",
    "DocumentTrackingService",
    "EXPORT_COLUMNS",
    "ExportNotFoundError",
    "ExportResult",
    "InvalidStatusTransitionError",
    "RegeneratedExportUrl",
    "SentenceNotFoundError",
    "SessionNotFoundError",
    "SessionPolicyError",
    "SessionStats",
    "SessionWithSentences",
    "UserSessionStats",
    "render_export_csv",
]
