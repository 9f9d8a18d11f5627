"""Upload ingestion: parsing, duplicate detection and bulk persistence."""

from corpus_engine.ingestion.bulk_persister import BatchError, BatchInsertResult, BulkPersister
from corpus_engine.ingestion.duplicate_detection import (
    MISSING_TEXT_ERROR,
    DuplicateDetector,
    PartitionResult,
)
from corpus_engine.ingestion.record_parser import (
    RecordParseError,
    UnsupportedFileFormatError,
    parse_csv,
    parse_file,
    parse_xlsx,
)
from corpus_engine.ingestion.upload_pipeline import (
    EmptyUploadError,
    UploadPipeline,
    UploadProcessingError,
    UploadResult,
)

__all__ = [
    "BatchError",
    "BatchInsertResult",
    "BulkPersister",
    "DuplicateDetector",
    "EmptyUploadError",
    "MISSING_TEXT_ERROR",
    "PartitionResult",
    "RecordParseError",
    "UnsupportedFileFormatError",
    "UploadPipeline",
    "UploadProcessingError",
    "UploadResult",
    "parse_csv",
    "parse_file",
    "parse_xlsx",
]
