"""Annotation session ledger with once-per-session export bookkeeping.

Session documents are updated with compare-and-swap: every mutation re-reads
the session, applies the change and writes it back only if the stored
version is unchanged, retrying a bounded number of times.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import uuid4

from ..clients import MinIOStorageClient, StorageError, StorageObjectNotFoundError
from ..models import (
    ALLOWED_TRANSITIONS,
    Annotation,
    AnnotationRequest,
    AnnotationSession,
    CorpusRecord,
    CreateSessionRequest,
    ExportEvent,
    ExportSessionRequest,
    SessionStatus,
    UpdateSessionRequest,
)
from ..stores import ConcurrentModificationError, SentenceStore, SessionStore, UserStore
from .export_renderer import render_export_csv

logger = logging.getLogger(__name__)

MAX_UPDATE_ATTEMPTS = 3


class SessionNotFoundError(Exception):
    """Raised when a session does not exist for the given owner."""

    pass


class SessionPolicyError(Exception):
    """Raised when an operation would violate the session's export rules."""

    pass


class ExportNotFoundError(Exception):
    """Raised when an export event or its stored file cannot be found."""

    pass


class SentenceNotFoundError(Exception):
    """Raised when annotating a sentence that is not in the corpus."""

    pass


@dataclass(frozen=True)
class SessionWithSentences:
    session: AnnotationSession
    sentences: List[CorpusRecord]
    exportable_count: int


@dataclass(frozen=True)
class SessionStats:
    total_annotated: int
    total_exported: int
    exportable_count: int
    exports_count: int
    status: SessionStatus
    started_at: datetime
    last_activity_at: datetime
    completed_at: Optional[datetime]


@dataclass(frozen=True)
class UserSessionStats:
    total_sessions: int
    active_sessions: int
    completed_sessions: int
    total_annotated: int
    total_exported: int
    unique_exported_sentences: int


@dataclass(frozen=True)
class ExportResult:
    """Outcome of one export operation."""

    file_name: str
    download_url: str
    sentence_count: int
    exported_at: datetime
    total_annotated: int
    total_exported: int
    remaining_to_export: int
    sentence_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RegeneratedExportUrl:
    file_name: str
    download_url: str
    expires_in: int


def slugify(name: str) -> str:
    """Lowercase a session name and join its words with hyphens."""
    return re.sub(r"[\s/\\]+", "-", name.strip().lower())


def default_export_file_name(session_name: str, now: datetime) -> str:
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{slugify(session_name)}-export-{timestamp}.csv"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnnotationSessionService:
    """Service for annotation sessions and their exports."""

    def __init__(
        self,
        session_store: SessionStore,
        sentence_store: SentenceStore,
        user_store: UserStore,
        storage: Optional[MinIOStorageClient] = None,
        url_ttl_seconds: int = 86400,
        export_prefix: str = "session-exports",
        exclusive_across_sessions: bool = False,
        max_attempts: int = MAX_UPDATE_ATTEMPTS,
    ):
        """Initialize the annotation session service.

        Args:
            session_store: Persistence for sessions.
            sentence_store: The corpus.
            user_store: E-mail lookup for export rendering.
            storage: Object storage receiving export files.
            url_ttl_seconds: Lifetime of export download links.
            export_prefix: Path segment between owner and session in export keys.
            exclusive_across_sessions: Skip sentences another export already marked.
            max_attempts: Compare-and-swap attempts before giving up.
        """
        self._session_store = session_store
        self._sentence_store = sentence_store
        self._user_store = user_store
        self._storage = storage
        self._url_ttl_seconds = url_ttl_seconds
        self._export_prefix = export_prefix
        self._exclusive_across_sessions = exclusive_across_sessions
        self._max_attempts = max_attempts

    def export_storage_key(self, user_id: str, session_id: str, file_name: str) -> str:
        return f"{user_id}/{self._export_prefix}/{session_id}/{file_name}"

    # --- Session lifecycle ---

    async def create_session(self, user_id: str, request: CreateSessionRequest) -> AnnotationSession:
        now = _utcnow()
        session = AnnotationSession(
            id=str(uuid4()),
            name=request.name,
            description=request.description,
            language_filter=request.language_filter,
            user_id=user_id,
            status=SessionStatus.ACTIVE,
            started_at=now,
            last_activity_at=now,
            created_at=now,
        )
        await self._session_store.insert(session)
        logger.info(f"Created annotation session {session.id} for user {user_id}")
        return session

    async def list_sessions(self, user_id: str) -> List[AnnotationSession]:
        return await self._session_store.list_by_user(user_id)

    async def get_session(self, session_id: str, user_id: str) -> AnnotationSession:
        """Get a session owned by ``user_id``.

        Raises:
            SessionNotFoundError: If no such session exists for the owner.
        """
        session = await self._session_store.get(session_id, user_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    async def get_session_with_sentences(self, session_id: str, user_id: str) -> SessionWithSentences:
        session = await self.get_session(session_id, user_id)
        sentences = await self._sentence_store.get_many(session.annotated_sentence_ids)
        return SessionWithSentences(
            session=session,
            sentences=sentences,
            exportable_count=len(session.exportable_ids),
        )

    async def _mutate(
        self,
        session_id: str,
        user_id: str,
        mutation: Callable[[AnnotationSession], None],
    ) -> AnnotationSession:
        """Apply ``mutation`` to the latest session version and store it atomically.

        Raises:
            SessionNotFoundError: If the session does not exist.
            ConcurrentModificationError: If every attempt lost to another writer.
        """
        for attempt in range(1, self._max_attempts + 1):
            session = await self.get_session(session_id, user_id)
            mutation(session)
            session.recount()
            stored = await self._session_store.replace_if_unchanged(session)
            if stored is not None:
                return stored
            logger.warning(f"Session {session_id} changed concurrently (attempt {attempt}/{self._max_attempts})")
        raise ConcurrentModificationError(
            f"Session {session_id} kept changing; gave up after {self._max_attempts} attempts"
        )

    async def update_session(
        self,
        session_id: str,
        user_id: str,
        request: UpdateSessionRequest,
    ) -> AnnotationSession:
        """Apply the set fields of ``request``.

        Raises:
            SessionPolicyError: If the status change is not allowed.
        """

        def apply(session: AnnotationSession) -> None:
            now = _utcnow()
            if request.status is not None and request.status != session.status:
                if request.status not in ALLOWED_TRANSITIONS[session.status]:
                    raise SessionPolicyError(
                        f"Cannot move session from {session.status.value} to {request.status.value}"
                    )
                session.status = request.status
                if request.status == SessionStatus.COMPLETED and session.completed_at is None:
                    session.completed_at = now
            if request.name is not None:
                session.name = request.name
            if request.description is not None:
                session.description = request.description
            if request.language_filter is not None:
                session.language_filter = request.language_filter
            session.last_activity_at = now

        return await self._mutate(session_id, user_id, apply)

    async def delete_session(self, session_id: str, user_id: str) -> None:
        """Delete a session that has never been exported.

        Raises:
            SessionPolicyError: If the session has exports.
        """
        session = await self.get_session(session_id, user_id)
        if session.exports or session.exported_sentence_ids:
            raise SessionPolicyError(
                "Cannot delete a session that has exports. Please archive it instead."
            )
        await self._session_store.delete(session_id, user_id)
        logger.info(f"Deleted annotation session {session_id}")

    # --- Annotated sentences ---

    async def annotate_sentence(
        self,
        session_id: str,
        user_id: str,
        sentence_id: str,
        request: AnnotationRequest,
    ) -> CorpusRecord:
        """Label a corpus sentence and add it to the session.

        Raises:
            SentenceNotFoundError: If the sentence is not in the corpus.
        """
        await self.get_session(session_id, user_id)
        annotation = Annotation(
            annotator_id=user_id,
            annotation_date=_utcnow(),
            **request.model_dump(),
        )
        record = await self._sentence_store.set_annotation(sentence_id, annotation)
        if record is None:
            raise SentenceNotFoundError(f"Sentence {sentence_id} not found")
        await self.add_annotated_sentence(session_id, user_id, sentence_id)
        return record

    async def add_annotated_sentence(self, session_id: str, user_id: str, sentence_id: str) -> AnnotationSession:
        """Add a sentence to the session; repeating the call only refreshes activity."""
        return await self.add_annotated_sentences(session_id, user_id, [sentence_id])

    async def add_annotated_sentences(
        self,
        session_id: str,
        user_id: str,
        sentence_ids: List[str],
    ) -> AnnotationSession:
        def apply(session: AnnotationSession) -> None:
            present = set(session.annotated_sentence_ids)
            for sentence_id in sentence_ids:
                if sentence_id not in present:
                    session.annotated_sentence_ids.append(sentence_id)
                    present.add(sentence_id)
            session.last_activity_at = _utcnow()

        return await self._mutate(session_id, user_id, apply)

    async def remove_annotated_sentence(self, session_id: str, user_id: str, sentence_id: str) -> AnnotationSession:
        """Remove a sentence that has not been exported from this session.

        Raises:
            SessionPolicyError: If the sentence was already exported.
        """

        def apply(session: AnnotationSession) -> None:
            if sentence_id in session.exported_sentence_ids:
                raise SessionPolicyError("Cannot remove an already exported sentence from session")
            session.annotated_sentence_ids = [
                sid for sid in session.annotated_sentence_ids if sid != sentence_id
            ]
            session.last_activity_at = _utcnow()

        return await self._mutate(session_id, user_id, apply)

    # --- Exports ---

    async def _resolve_export_ids(
        self,
        session: AnnotationSession,
        requested: Optional[List[str]],
    ) -> List[str]:
        if requested:
            annotated = set(session.annotated_sentence_ids)
            outsiders = [sid for sid in requested if sid not in annotated]
            if outsiders:
                raise SessionPolicyError("Some requested sentences are not in this session")
            exported = set(session.exported_sentence_ids)
            ids = [sid for sid in dict.fromkeys(requested) if sid not in exported]
        else:
            ids = session.exportable_ids
        if not ids:
            raise SessionPolicyError("No new sentences to export")
        return ids

    async def export_session(
        self,
        session_id: str,
        user_id: str,
        request: Optional[ExportSessionRequest] = None,
    ) -> ExportResult:
        """Render unexported session sentences to storage and record the export.

        The file is stored and signed before the session is touched, so a
        storage failure leaves the ledger unchanged.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionPolicyError: If nothing is exportable or a requested id is
                not a session member.
            StorageError: If the file cannot be stored or signed.
        """
        request = request or ExportSessionRequest()
        session = await self.get_session(session_id, user_id)
        ids = await self._resolve_export_ids(session, request.sentence_ids)

        records = await self._sentence_store.get_many(ids)
        if self._exclusive_across_sessions:
            records = [record for record in records if record.exported_at is None]
        by_id = {record.id: record for record in records}
        ids = [sid for sid in ids if sid in by_id]
        if not ids:
            raise SessionPolicyError("No new sentences to export")
        records = [by_id[sid] for sid in ids]

        if self._storage is None:
            raise StorageError("Object storage is not configured")

        people = {record.collector_id for record in records if record.collector_id}
        people.update(record.annotation.annotator_id for record in records if record.annotation)
        emails = await self._user_store.get_emails(sorted(people))
        content = render_export_csv(records, emails)

        now = _utcnow()
        file_name = request.file_name or default_export_file_name(session.name, now)
        storage_key = self.export_storage_key(user_id, session_id, file_name)
        await self._storage.put(storage_key, content, content_type="text/csv")
        download_url = await self._storage.get_retrieval_url(storage_key, self._url_ttl_seconds)

        def apply(current: AnnotationSession) -> None:
            annotated = set(current.annotated_sentence_ids)
            if any(sid not in annotated for sid in ids):
                raise SessionPolicyError("Session sentences changed during export")
            exported = set(current.exported_sentence_ids)
            current.exported_sentence_ids.extend(sid for sid in ids if sid not in exported)
            current.exports.append(
                ExportEvent(
                    exported_at=now,
                    exported_by=user_id,
                    sentence_count=len(ids),
                    file_name=file_name,
                    storage_key=storage_key,
                    download_url=download_url,
                )
            )
            current.last_activity_at = now

        stored = await self._mutate(session_id, user_id, apply)
        await self._sentence_store.mark_exported(ids, now)

        logger.info(f"Exported {len(ids)} sentences from session {session_id} to {storage_key}")
        return ExportResult(
            file_name=file_name,
            download_url=download_url,
            sentence_count=len(ids),
            exported_at=now,
            total_annotated=stored.total_annotated,
            total_exported=stored.total_exported,
            remaining_to_export=stored.total_annotated - stored.total_exported,
            sentence_ids=list(ids),
        )

    async def get_export_history(self, session_id: str, user_id: str) -> List[ExportEvent]:
        session = await self.get_session(session_id, user_id)
        return list(session.exports)

    async def regenerate_export_url(
        self,
        session_id: str,
        user_id: str,
        export_index: int,
    ) -> RegeneratedExportUrl:
        """Sign a new download link for a past export.

        Raises:
            ExportNotFoundError: If the index is out of range or the file is gone.
        """
        session = await self.get_session(session_id, user_id)
        if export_index < 0 or export_index >= len(session.exports):
            raise ExportNotFoundError("Export not found")
        if self._storage is None:
            raise StorageError("Object storage is not configured")

        event = session.exports[export_index]
        try:
            download_url = await self._storage.get_retrieval_url(event.storage_key, self._url_ttl_seconds)
        except StorageObjectNotFoundError as e:
            raise ExportNotFoundError("Export file not found. It may have been deleted.") from e

        def apply(current: AnnotationSession) -> None:
            current.exports[export_index].download_url = download_url

        await self._mutate(session_id, user_id, apply)
        return RegeneratedExportUrl(
            file_name=event.file_name,
            download_url=download_url,
            expires_in=self._url_ttl_seconds,
        )

    # --- Statistics ---

    async def get_session_stats(self, session_id: str, user_id: str) -> SessionStats:
        session = await self.get_session(session_id, user_id)
        return SessionStats(
            total_annotated=session.total_annotated,
            total_exported=session.total_exported,
            exportable_count=len(session.exportable_ids),
            exports_count=len(session.exports),
            status=session.status,
            started_at=session.started_at,
            last_activity_at=session.last_activity_at,
            completed_at=session.completed_at,
        )

    async def get_user_session_stats(self, user_id: str) -> UserSessionStats:
        sessions = await self._session_store.list_by_user(user_id)
        finished = (SessionStatus.COMPLETED, SessionStatus.EXPORTED)
        return UserSessionStats(
            total_sessions=len(sessions),
            active_sessions=sum(1 for s in sessions if s.status == SessionStatus.ACTIVE),
            completed_sessions=sum(1 for s in sessions if s.status in finished),
            total_annotated=sum(s.total_annotated for s in sessions),
            total_exported=sum(s.total_exported for s in sessions),
            unique_exported_sentences=len({sid for s in sessions for sid in s.exported_sentence_ids}),
        )

    async def is_sentence_exported(self, sentence_id: str, user_id: str) -> bool:
        """Whether any of the owner's sessions exported the sentence."""
        return await self._session_store.any_exported(user_id, sentence_id)
