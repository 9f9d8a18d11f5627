"""SQLite persistence backend.

All tables live in one database file. Lists and nested objects are stored
as JSON text and queried with the JSON1 functions (``json_each``).
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from corpus_engine.clients import SqliteClient
from corpus_engine.models import (
    Annotation,
    AnnotationSession,
    CorpusRecord,
    DailyProcessingBucket,
    DocumentOutcome,
    DocumentStats,
    DocumentUpload,
)
from corpus_engine.stores.base import (
    BulkWriteOutcome,
    DocumentUploadStore,
    ExistingSentence,
    SentenceStore,
    SessionStore,
    UserStore,
)

logger = logging.getLogger(__name__)

# SQL statements
CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS sentences (
    id TEXT PRIMARY KEY,
    document_id TEXT,
    collector_id TEXT,
    text TEXT NOT NULL,
    original_content TEXT,
    language TEXT,
    script TEXT,
    country TEXT,
    region_dialect TEXT,
    source_type TEXT,
    source_ref TEXT,
    collection_date TEXT,
    domain TEXT,
    topic TEXT,
    theme TEXT,
    sensitive_characteristic TEXT,
    safety_flag TEXT,
    pii_removed INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    annotation TEXT,
    exported_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_sentences_text ON sentences(text);
CREATE INDEX IF NOT EXISTS idx_sentences_document ON sentences(document_id);

CREATE TABLE IF NOT EXISTS document_uploads (
    document_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    original_filename TEXT NOT NULL,
    s3_key TEXT NOT NULL,
    file_size INTEGER,
    mime_type TEXT,
    total_rows INTEGER NOT NULL DEFAULT 0,
    successful_inserts INTEGER NOT NULL DEFAULT 0,
    failed_inserts INTEGER NOT NULL DEFAULT 0,
    duplicate_count INTEGER NOT NULL DEFAULT 0,
    duplicates TEXT NOT NULL DEFAULT '[]',
    errors TEXT NOT NULL DEFAULT '[]',
    processing_time_ms INTEGER,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_document_uploads_user ON document_uploads(user_id, created_at);

CREATE TABLE IF NOT EXISTS annotation_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    version INTEGER NOT NULL,
    body TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_annotation_sessions_user ON annotation_sessions(user_id, created_at);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT
);
"""

SENTENCE_COLUMNS = (
    "id", "document_id", "collector_id", "text", "original_content", "language",
    "script", "country", "region_dialect", "source_type", "source_ref",
    "collection_date", "domain", "topic", "theme", "sensitive_characteristic",
    "safety_flag", "pii_removed", "notes", "created_at", "updated_at",
)

INSERT_SENTENCE_SQL = (
    f"INSERT INTO sentences ({', '.join(SENTENCE_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in SENTENCE_COLUMNS)})"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_schema(sqlite_client: SqliteClient) -> None:
    """Create all tables if they don't exist."""
    sqlite_client.execute_script(CREATE_TABLES_SQL)
    logger.debug("SQLite schema initialized")


def _row_to_sentence(row: sqlite3.Row) -> CorpusRecord:
    data = dict(row)
    data["pii_removed"] = bool(data.get("pii_removed"))
    data["annotation"] = json.loads(data["annotation"]) if data.get("annotation") else None
    return CorpusRecord.from_document(data)


def _row_to_document(row: sqlite3.Row) -> DocumentUpload:
    data = dict(row)
    data["duplicates"] = json.loads(data["duplicates"])
    data["errors"] = json.loads(data["errors"])
    return DocumentUpload.from_document(data)


class SqliteSentenceStore(SentenceStore):
    """Corpus sentences in SQLite. A unique index on ``text`` guards duplicates."""

    def __init__(self, sqlite_client: SqliteClient):
        self._sqlite_client = sqlite_client

    async def find_existing_by_text(self, texts: List[str]) -> Dict[str, ExistingSentence]:
        if not texts:
            return {}
        rows = self._sqlite_client.execute_query(
            "SELECT id, text, document_id FROM sentences "
            "WHERE text IN (SELECT value FROM json_each(?))",
            (json.dumps(texts),),
        )
        return {
            row["text"]: ExistingSentence(sentence_id=row["id"], document_id=row["document_id"])
            for row in rows
        }

    async def insert_many_unordered(self, documents: List[Dict[str, Any]]) -> BulkWriteOutcome:
        now = _utcnow().isoformat()
        prepared: List[Dict[str, Any]] = []
        for document in documents:
            prepared.append({
                **document,
                "id": document.get("id") or uuid.uuid4().hex,
                "created_at": now,
                "updated_at": now,
            })

        rows = [
            tuple(
                int(doc[column]) if column == "pii_removed" else doc.get(column)
                for column in SENTENCE_COLUMNS
            )
            for doc in prepared
        ]
        inserted_indexes, failures = self._sqlite_client.insert_each(INSERT_SENTENCE_SQL, rows)

        return BulkWriteOutcome(
            inserted=[CorpusRecord.from_document(prepared[i]) for i in inserted_indexes],
            errors=failures,
        )

    async def get_many(self, sentence_ids: List[str]) -> List[CorpusRecord]:
        if not sentence_ids:
            return []
        rows = self._sqlite_client.execute_query(
            "SELECT * FROM sentences WHERE id IN (SELECT value FROM json_each(?))",
            (json.dumps(sentence_ids),),
        )
        return [_row_to_sentence(row) for row in rows]

    async def set_annotation(self, sentence_id: str, annotation: Annotation) -> Optional[CorpusRecord]:
        affected = self._sqlite_client.execute_update(
            "UPDATE sentences SET annotation = ?, updated_at = ? WHERE id = ?",
            (json.dumps(annotation.to_dict()), _utcnow().isoformat(), sentence_id),
        )
        if not affected:
            return None
        records = await self.get_many([sentence_id])
        return records[0]

    async def mark_exported(self, sentence_ids: List[str], exported_at: datetime) -> int:
        if not sentence_ids:
            return 0
        return self._sqlite_client.execute_update(
            "UPDATE sentences SET exported_at = ?, updated_at = ? "
            "WHERE exported_at IS NULL AND id IN (SELECT value FROM json_each(?))",
            (exported_at.isoformat(), _utcnow().isoformat(), json.dumps(sentence_ids)),
        )

    async def delete_by_document(self, document_id: str) -> int:
        return self._sqlite_client.execute_update(
            "DELETE FROM sentences WHERE document_id = ?",
            (document_id,),
        )

    async def count_by_document(self, document_id: str) -> int:
        rows = self._sqlite_client.execute_query(
            "SELECT COUNT(*) AS n FROM sentences WHERE document_id = ?",
            (document_id,),
        )
        return rows[0]["n"]


class SqliteDocumentUploadStore(DocumentUploadStore):
    """Document tracking records in SQLite."""

    def __init__(self, sqlite_client: SqliteClient):
        self._sqlite_client = sqlite_client

    async def insert(self, document: DocumentUpload) -> DocumentUpload:
        data = document.to_document()
        self._sqlite_client.execute_query(
            """INSERT INTO document_uploads
               (document_id, user_id, original_filename, s3_key, file_size, mime_type,
                total_rows, successful_inserts, failed_inserts, duplicate_count,
                duplicates, errors, processing_time_ms, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                data["document_id"],
                data["user_id"],
                data["original_filename"],
                data["s3_key"],
                data["file_size"],
                data["mime_type"],
                data["total_rows"],
                data["successful_inserts"],
                data["failed_inserts"],
                data["duplicate_count"],
                json.dumps(data["duplicates"]),
                json.dumps(data["errors"]),
                data["processing_time_ms"],
                data["status"],
                data["created_at"],
                data["updated_at"],
            ),
        )
        return document

    async def apply_outcome(
        self,
        document_id: str,
        outcome: DocumentOutcome,
        updated_at: datetime,
    ) -> Optional[DocumentUpload]:
        affected = self._sqlite_client.execute_update(
            """UPDATE document_uploads
               SET status = ?, total_rows = ?, successful_inserts = ?, failed_inserts = ?,
                   duplicate_count = ?, duplicates = ?, errors = ?, processing_time_ms = ?,
                   updated_at = ?
               WHERE document_id = ?""",
            (
                outcome.status.value,
                outcome.total_rows,
                outcome.successful_inserts,
                outcome.failed_inserts,
                outcome.duplicate_count,
                json.dumps([d.to_dict() for d in outcome.duplicates]),
                json.dumps([e.to_dict() for e in outcome.errors]),
                outcome.processing_time_ms,
                updated_at.isoformat(),
                document_id,
            ),
        )
        if not affected:
            return None
        return await self.get(document_id)

    async def get(self, document_id: str) -> Optional[DocumentUpload]:
        rows = self._sqlite_client.execute_query(
            "SELECT * FROM document_uploads WHERE document_id = ?",
            (document_id,),
        )
        return _row_to_document(rows[0]) if rows else None

    async def list(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        rows = self._sqlite_client.execute_query(
            "SELECT * FROM document_uploads WHERE (? IS NULL OR user_id = ?) "
            "ORDER BY created_at DESC",
            (user_id, user_id),
        )
        return [_row_to_document(row) for row in rows]

    async def delete(self, document_id: str) -> bool:
        affected = self._sqlite_client.execute_update(
            "DELETE FROM document_uploads WHERE document_id = ?",
            (document_id,),
        )
        return affected > 0

    async def stats(self, user_id: Optional[str] = None) -> DocumentStats:
        row = self._sqlite_client.execute_query(
            """SELECT COUNT(*) AS total_documents,
                      COALESCE(SUM(total_rows), 0) AS total_sentences_processed,
                      COALESCE(SUM(successful_inserts), 0) AS total_successful_inserts,
                      COALESCE(SUM(duplicate_count), 0) AS total_duplicates,
                      COALESCE(SUM(failed_inserts), 0) AS total_errors,
                      COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed_uploads,
                      COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed_uploads,
                      COALESCE(SUM(CASE WHEN status = 'processing' THEN 1 ELSE 0 END), 0) AS processing_uploads
               FROM document_uploads
               WHERE (? IS NULL OR user_id = ?)""",
            (user_id, user_id),
        )[0]
        return DocumentStats(**dict(row))

    async def daily_history(
        self,
        since: datetime,
        user_id: Optional[str] = None,
    ) -> List[DailyProcessingBucket]:
        rows = self._sqlite_client.execute_query(
            """SELECT substr(created_at, 1, 10) AS day,
                      COUNT(*) AS uploads,
                      COALESCE(SUM(total_rows), 0) AS sentences_processed,
                      COALESCE(SUM(duplicate_count), 0) AS duplicates_found,
                      COALESCE(SUM(successful_inserts), 0) AS successful_inserts
               FROM document_uploads
               WHERE created_at >= ? AND (? IS NULL OR user_id = ?)
               GROUP BY day
               ORDER BY day""",
            (since.astimezone(timezone.utc).isoformat(), user_id, user_id),
        )
        return [DailyProcessingBucket(**dict(row)) for row in rows]

    async def duplicate_report(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        rows = self._sqlite_client.execute_query(
            "SELECT * FROM document_uploads "
            "WHERE duplicate_count > 0 AND (? IS NULL OR user_id = ?) "
            "ORDER BY duplicate_count DESC",
            (user_id, user_id),
        )
        return [_row_to_document(row) for row in rows]


class SqliteSessionStore(SessionStore):
    """Annotation sessions in SQLite, versioned for compare-and-swap updates."""

    def __init__(self, sqlite_client: SqliteClient):
        self._sqlite_client = sqlite_client

    @staticmethod
    def _from_row(row: sqlite3.Row) -> AnnotationSession:
        return AnnotationSession.from_document(json.loads(row["body"]), version=str(row["version"]))

    async def insert(self, session: AnnotationSession) -> AnnotationSession:
        self._sqlite_client.execute_query(
            "INSERT INTO annotation_sessions (id, user_id, version, body, created_at) "
            "VALUES (?, ?, 1, ?, ?)",
            (
                session.id,
                session.user_id,
                json.dumps(session.to_document()),
                session.created_at.isoformat(),
            ),
        )
        session.version = "1"
        return session

    async def get(self, session_id: str, user_id: str) -> Optional[AnnotationSession]:
        rows = self._sqlite_client.execute_query(
            "SELECT version, body FROM annotation_sessions WHERE id = ? AND user_id = ?",
            (session_id, user_id),
        )
        return self._from_row(rows[0]) if rows else None

    async def list_by_user(self, user_id: str) -> List[AnnotationSession]:
        rows = self._sqlite_client.execute_query(
            "SELECT version, body FROM annotation_sessions WHERE user_id = ? "
            "ORDER BY created_at DESC",
            (user_id,),
        )
        return [self._from_row(row) for row in rows]

    async def replace_if_unchanged(self, session: AnnotationSession) -> Optional[AnnotationSession]:
        affected = self._sqlite_client.execute_update(
            "UPDATE annotation_sessions SET body = ?, version = version + 1 "
            "WHERE id = ? AND user_id = ? AND version = ?",
            (
                json.dumps(session.to_document()),
                session.id,
                session.user_id,
                int(session.version),
            ),
        )
        if not affected:
            return None
        session.version = str(int(session.version) + 1)
        return session

    async def delete(self, session_id: str, user_id: str) -> bool:
        affected = self._sqlite_client.execute_update(
            "DELETE FROM annotation_sessions WHERE id = ? AND user_id = ?",
            (session_id, user_id),
        )
        return affected > 0

    async def any_exported(self, user_id: str, sentence_id: str) -> bool:
        rows = self._sqlite_client.execute_query(
            """SELECT 1 FROM annotation_sessions s,
                      json_each(json_extract(s.body, '$.exported_sentence_ids')) e
               WHERE s.user_id = ? AND e.value = ?
               LIMIT 1""",
            (user_id, sentence_id),
        )
        return bool(rows)


class SqliteUserStore(UserStore):
    """User contact details in SQLite."""

    def __init__(self, sqlite_client: SqliteClient):
        self._sqlite_client = sqlite_client

    async def upsert_user(
        self,
        user_id: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        self._sqlite_client.execute_query(
            "INSERT INTO users (id, email, first_name, last_name) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET email = excluded.email, "
            "first_name = excluded.first_name, last_name = excluded.last_name",
            (user_id, email, first_name, last_name),
        )

    async def get_emails(self, user_ids: List[str]) -> Dict[str, str]:
        if not user_ids:
            return {}
        rows = self._sqlite_client.execute_query(
            "SELECT id, email FROM users WHERE id IN (SELECT value FROM json_each(?))",
            (json.dumps(user_ids),),
        )
        return {row["id"]: row["email"] for row in rows}
