"""Persistence interfaces shared by the SQLite and Cosmos DB backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from corpus_engine.models import (
    Annotation,
    AnnotationSession,
    CorpusRecord,
    DailyProcessingBucket,
    DocumentOutcome,
    DocumentStats,
    DocumentUpload,
)


class ConcurrentModificationError(Exception):
    """Raised when an optimistic update keeps losing to concurrent writers."""

    pass


@dataclass(frozen=True)
class ExistingSentence:
    """Identity of a corpus sentence matched by the duplicate lookup."""

    sentence_id: str
    document_id: Optional[str]


@dataclass(frozen=True)
class BulkWriteOutcome:
    """Result of an unordered bulk insert.

    ``errors`` holds (index within the attempted batch, message) pairs.
    """

    inserted: List[CorpusRecord] = field(default_factory=list)
    errors: List[Tuple[int, str]] = field(default_factory=list)


class SentenceStore(ABC):
    """The corpus."""

    @abstractmethod
    async def find_existing_by_text(self, texts: List[str]) -> Dict[str, ExistingSentence]:
        """Return the sentences whose text is in ``texts`` using one query."""

    @abstractmethod
    async def insert_many_unordered(self, documents: List[Dict[str, Any]]) -> BulkWriteOutcome:
        """Insert all documents, continuing past per-document failures.

        Raises on failures that prevent any write (e.g. lost connection).
        """

    @abstractmethod
    async def get_many(self, sentence_ids: List[str]) -> List[CorpusRecord]:
        """Fetch sentences by id; unknown ids are skipped."""

    @abstractmethod
    async def set_annotation(self, sentence_id: str, annotation: Annotation) -> Optional[CorpusRecord]:
        """Attach annotation labels; returns None for an unknown id."""

    @abstractmethod
    async def mark_exported(self, sentence_ids: List[str], exported_at: datetime) -> int:
        """Stamp ``exported_at`` on sentences that do not carry it yet."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete every sentence of one upload batch."""

    @abstractmethod
    async def count_by_document(self, document_id: str) -> int:
        """Count the sentences of one upload batch."""

    async def close(self) -> None:
        return None


class DocumentUploadStore(ABC):
    """The document tracking ledger."""

    @abstractmethod
    async def insert(self, document: DocumentUpload) -> DocumentUpload:
        """Persist a new tracking record."""

    @abstractmethod
    async def apply_outcome(
        self,
        document_id: str,
        outcome: DocumentOutcome,
        updated_at: datetime,
    ) -> Optional[DocumentUpload]:
        """Overwrite status, counts and details in a single update."""

    @abstractmethod
    async def get(self, document_id: str) -> Optional[DocumentUpload]:
        """Fetch a tracking record."""

    @abstractmethod
    async def list(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        """All records, newest first, optionally for one owner."""

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a tracking record."""

    @abstractmethod
    async def stats(self, user_id: Optional[str] = None) -> DocumentStats:
        """Totals across the ledger."""

    @abstractmethod
    async def daily_history(
        self,
        since: datetime,
        user_id: Optional[str] = None,
    ) -> List[DailyProcessingBucket]:
        """Per-day totals for records created at or after ``since``."""

    @abstractmethod
    async def duplicate_report(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        """Records with at least one duplicate, most duplicates first."""

    async def close(self) -> None:
        return None


class SessionStore(ABC):
    """The annotation session ledger."""

    @abstractmethod
    async def insert(self, session: AnnotationSession) -> AnnotationSession:
        """Persist a new session."""

    @abstractmethod
    async def get(self, session_id: str, user_id: str) -> Optional[AnnotationSession]:
        """Fetch a session owned by ``user_id``."""

    @abstractmethod
    async def list_by_user(self, user_id: str) -> List[AnnotationSession]:
        """Sessions of one owner, newest first."""

    @abstractmethod
    async def replace_if_unchanged(self, session: AnnotationSession) -> Optional[AnnotationSession]:
        """Write the session only if its version is still current.

        Returns:
            The stored session with its new version, or None on a version conflict.
        """

    @abstractmethod
    async def delete(self, session_id: str, user_id: str) -> bool:
        """Delete a session."""

    @abstractmethod
    async def any_exported(self, user_id: str, sentence_id: str) -> bool:
        """Whether any session of ``user_id`` lists the sentence as exported."""

    async def close(self) -> None:
        return None


class UserStore(ABC):
    """Read-side identity lookup for export rendering."""

    @abstractmethod
    async def upsert_user(
        self,
        user_id: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        """Create or update a user's contact details."""

    @abstractmethod
    async def get_emails(self, user_ids: List[str]) -> Dict[str, str]:
        """Map user ids to e-mail addresses; unknown ids are omitted."""

    async def close(self) -> None:
        return None
