"""Azure Cosmos DB persistence backend.

Each store wraps one container. Aggregates are computed over projected rows
because the NoSQL API has no cross-partition GROUP BY with ordering.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosHttpResponseError,
    CosmosResourceNotFoundError,
)

from corpus_engine.clients import CosmosDBClient
from corpus_engine.models import (
    Annotation,
    AnnotationSession,
    CorpusRecord,
    DailyProcessingBucket,
    DocumentOutcome,
    DocumentStats,
    DocumentUpload,
    UploadStatus,
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

NOT_YET_EXPORTED_PREDICATE = "FROM c WHERE NOT IS_DEFINED(c.exported_at) OR IS_NULL(c.exported_at)"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _owner_clause(user_id: Optional[str]) -> Tuple[str, List[Dict[str, Any]]]:
    if user_id is None:
        return "", []
    return " AND c.user_id = @user_id", [{"name": "@user_id", "value": user_id}]


class CosmosSentenceStore(SentenceStore):
    """Corpus sentences partitioned by ``/language`` with a unique key on ``/text``."""

    def __init__(self, client: CosmosDBClient):
        self._client = client

    async def find_existing_by_text(self, texts: List[str]) -> Dict[str, ExistingSentence]:
        if not texts:
            return {}
        items = await self._client.query_items(
            "SELECT c.id, c.text, c.document_id FROM c WHERE ARRAY_CONTAINS(@texts, c.text)",
            parameters=[{"name": "@texts", "value": texts}],
        )
        return {
            item["text"]: ExistingSentence(sentence_id=item["id"], document_id=item.get("document_id"))
            for item in items
        }

    async def insert_many_unordered(self, documents: List[Dict[str, Any]]) -> BulkWriteOutcome:
        now = _utcnow_iso()
        prepared = [
            {**document, "id": document.get("id") or str(uuid.uuid4()), "created_at": now, "updated_at": now}
            for document in documents
        ]

        results = await asyncio.gather(
            *(self._client.create_item(document) for document in prepared),
            return_exceptions=True,
        )

        inserted: List[CorpusRecord] = []
        errors: List[Tuple[int, str]] = []
        unexpected: List[BaseException] = []
        for index, result in enumerate(results):
            if isinstance(result, CosmosHttpResponseError):
                errors.append((index, result.message or str(result)))
            elif isinstance(result, BaseException):
                unexpected.append(result)
                errors.append((index, str(result)))
            else:
                inserted.append(CorpusRecord.from_document(result))

        if unexpected and not inserted:
            # Nothing was written and the failures were not per-document rejections
            raise unexpected[0]

        return BulkWriteOutcome(inserted=inserted, errors=errors)

    async def _find_by_ids(self, sentence_ids: List[str]) -> List[Dict[str, Any]]:
        return await self._client.query_items(
            "SELECT * FROM c WHERE ARRAY_CONTAINS(@ids, c.id)",
            parameters=[{"name": "@ids", "value": sentence_ids}],
        )

    async def get_many(self, sentence_ids: List[str]) -> List[CorpusRecord]:
        if not sentence_ids:
            return []
        return [CorpusRecord.from_document(item) for item in await self._find_by_ids(sentence_ids)]

    async def set_annotation(self, sentence_id: str, annotation: Annotation) -> Optional[CorpusRecord]:
        items = await self._find_by_ids([sentence_id])
        if not items:
            return None
        item = await self._client.patch_item(
            sentence_id,
            partition_key=items[0][self._client.partition_key_field],
            operations=[
                {"op": "set", "path": "/annotation", "value": annotation.to_dict()},
                {"op": "set", "path": "/updated_at", "value": _utcnow_iso()},
            ],
        )
        return CorpusRecord.from_document(item)

    async def mark_exported(self, sentence_ids: List[str], exported_at: datetime) -> int:
        if not sentence_ids:
            return 0
        marked = 0
        for item in await self._find_by_ids(sentence_ids):
            if item.get("exported_at"):
                continue
            try:
                await self._client.patch_item(
                    item["id"],
                    partition_key=item[self._client.partition_key_field],
                    operations=[
                        {"op": "set", "path": "/exported_at", "value": exported_at.isoformat()},
                        {"op": "set", "path": "/updated_at", "value": _utcnow_iso()},
                    ],
                    filter_predicate=NOT_YET_EXPORTED_PREDICATE,
                )
                marked += 1
            except CosmosAccessConditionFailedError:
                # Another export stamped it first
                continue
        return marked

    async def delete_by_document(self, document_id: str) -> int:
        items = await self._client.query_items(
            "SELECT c.id, c.language FROM c WHERE c.document_id = @document_id",
            parameters=[{"name": "@document_id", "value": document_id}],
        )
        for item in items:
            await self._client.delete_item(item["id"], partition_key=item[self._client.partition_key_field])
        return len(items)

    async def count_by_document(self, document_id: str) -> int:
        result = await self._client.query_items(
            "SELECT VALUE COUNT(1) FROM c WHERE c.document_id = @document_id",
            parameters=[{"name": "@document_id", "value": document_id}],
        )
        return int(result[0]) if result else 0

    async def close(self) -> None:
        await self._client.close()


class CosmosDocumentUploadStore(DocumentUploadStore):
    """Document tracking records partitioned by ``/user_id``."""

    def __init__(self, client: CosmosDBClient):
        self._client = client

    async def _read(self, document_id: str) -> Optional[Dict[str, Any]]:
        items = await self._client.query_items(
            "SELECT * FROM c WHERE c.id = @id",
            parameters=[{"name": "@id", "value": document_id}],
        )
        return items[0] if items else None

    async def insert(self, document: DocumentUpload) -> DocumentUpload:
        await self._client.create_item(document.to_document())
        return document

    async def apply_outcome(
        self,
        document_id: str,
        outcome: DocumentOutcome,
        updated_at: datetime,
    ) -> Optional[DocumentUpload]:
        existing = await self._read(document_id)
        if existing is None:
            return None
        values = {
            "status": outcome.status.value,
            "total_rows": outcome.total_rows,
            "successful_inserts": outcome.successful_inserts,
            "failed_inserts": outcome.failed_inserts,
            "duplicate_count": outcome.duplicate_count,
            "duplicates": [d.to_dict() for d in outcome.duplicates],
            "errors": [e.to_dict() for e in outcome.errors],
            "processing_time_ms": outcome.processing_time_ms,
            "updated_at": updated_at.isoformat(),
        }
        item = await self._client.patch_item(
            document_id,
            partition_key=existing["user_id"],
            operations=[{"op": "set", "path": f"/{key}", "value": value} for key, value in values.items()],
        )
        return DocumentUpload.from_document(item)

    async def get(self, document_id: str) -> Optional[DocumentUpload]:
        item = await self._read(document_id)
        return DocumentUpload.from_document(item) if item else None

    async def list(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        clause, parameters = _owner_clause(user_id)
        items = await self._client.query_items(
            f"SELECT * FROM c WHERE true{clause} ORDER BY c.created_at DESC",
            parameters=parameters,
            partition_key=user_id,
        )
        return [DocumentUpload.from_document(item) for item in items]

    async def delete(self, document_id: str) -> bool:
        existing = await self._read(document_id)
        if existing is None:
            return False
        await self._client.delete_item(document_id, partition_key=existing["user_id"])
        return True

    async def stats(self, user_id: Optional[str] = None) -> DocumentStats:
        clause, parameters = _owner_clause(user_id)
        rows = await self._client.query_items(
            "SELECT c.status, c.total_rows, c.successful_inserts, c.duplicate_count, c.failed_inserts "
            f"FROM c WHERE true{clause}",
            parameters=parameters,
            partition_key=user_id,
        )
        statuses = [row.get("status") for row in rows]
        return DocumentStats(
            total_documents=len(rows),
            total_sentences_processed=sum(row.get("total_rows") or 0 for row in rows),
            total_successful_inserts=sum(row.get("successful_inserts") or 0 for row in rows),
            total_duplicates=sum(row.get("duplicate_count") or 0 for row in rows),
            total_errors=sum(row.get("failed_inserts") or 0 for row in rows),
            completed_uploads=statuses.count(UploadStatus.COMPLETED.value),
            failed_uploads=statuses.count(UploadStatus.FAILED.value),
            processing_uploads=statuses.count(UploadStatus.PROCESSING.value),
        )

    async def daily_history(
        self,
        since: datetime,
        user_id: Optional[str] = None,
    ) -> List[DailyProcessingBucket]:
        clause, parameters = _owner_clause(user_id)
        rows = await self._client.query_items(
            "SELECT c.created_at, c.total_rows, c.duplicate_count, c.successful_inserts "
            f"FROM c WHERE c.created_at >= @since{clause} ORDER BY c.created_at",
            parameters=[{"name": "@since", "value": since.astimezone(timezone.utc).isoformat()}] + parameters,
            partition_key=user_id,
        )
        buckets: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        for row in rows:
            bucket = buckets.setdefault(
                row["created_at"][:10],
                {"uploads": 0, "sentences_processed": 0, "duplicates_found": 0, "successful_inserts": 0},
            )
            bucket["uploads"] += 1
            bucket["sentences_processed"] += row.get("total_rows") or 0
            bucket["duplicates_found"] += row.get("duplicate_count") or 0
            bucket["successful_inserts"] += row.get("successful_inserts") or 0
        return [DailyProcessingBucket(day=day, **totals) for day, totals in buckets.items()]

    async def duplicate_report(self, user_id: Optional[str] = None) -> List[DocumentUpload]:
        clause, parameters = _owner_clause(user_id)
        items = await self._client.query_items(
            f"SELECT * FROM c WHERE c.duplicate_count > 0{clause} ORDER BY c.duplicate_count DESC",
            parameters=parameters,
            partition_key=user_id,
        )
        return [DocumentUpload.from_document(item) for item in items]

    async def close(self) -> None:
        await self._client.close()


class CosmosSessionStore(SessionStore):
    """Annotation sessions partitioned by ``/user_id``; ``_etag`` is the version."""

    def __init__(self, client: CosmosDBClient):
        self._client = client

    async def insert(self, session: AnnotationSession) -> AnnotationSession:
        item = await self._client.create_item(session.to_document())
        session.version = item.get("_etag")
        return session

    async def get(self, session_id: str, user_id: str) -> Optional[AnnotationSession]:
        try:
            item = await self._client.read_item(session_id, partition_key=user_id)
        except CosmosResourceNotFoundError:
            return None
        return AnnotationSession.from_document(item)

    async def list_by_user(self, user_id: str) -> List[AnnotationSession]:
        items = await self._client.query_items(
            "SELECT * FROM c WHERE c.user_id = @user_id ORDER BY c.created_at DESC",
            parameters=[{"name": "@user_id", "value": user_id}],
            partition_key=user_id,
        )
        return [AnnotationSession.from_document(item) for item in items]

    async def replace_if_unchanged(self, session: AnnotationSession) -> Optional[AnnotationSession]:
        try:
            item = await self._client.replace_item_if_match(session.to_document(), etag=session.version)
        except CosmosAccessConditionFailedError:
            return None
        session.version = item.get("_etag")
        return session

    async def delete(self, session_id: str, user_id: str) -> bool:
        try:
            await self._client.delete_item(session_id, partition_key=user_id)
        except CosmosResourceNotFoundError:
            return False
        return True

    async def any_exported(self, user_id: str, sentence_id: str) -> bool:
        result = await self._client.query_items(
            "SELECT VALUE COUNT(1) FROM c "
            "WHERE c.user_id = @user_id AND ARRAY_CONTAINS(c.exported_sentence_ids, @sentence_id)",
            parameters=[
                {"name": "@user_id", "value": user_id},
                {"name": "@sentence_id", "value": sentence_id},
            ],
            partition_key=user_id,
        )
        return bool(result and result[0])

    async def close(self) -> None:
        await self._client.close()


class CosmosUserStore(UserStore):
    """User contact details partitioned by ``/id``."""

    def __init__(self, client: CosmosDBClient):
        self._client = client

    async def upsert_user(
        self,
        user_id: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        await self._client.upsert_item(
            {"id": user_id, "email": email, "first_name": first_name, "last_name": last_name}
        )

    async def get_emails(self, user_ids: List[str]) -> Dict[str, str]:
        if not user_ids:
            return {}
        items = await self._client.query_items(
            "SELECT c.id, c.email FROM c WHERE ARRAY_CONTAINS(@ids, c.id)",
            parameters=[{"name": "@ids", "value": user_ids}],
        )
        return {item["id"]: item["email"] for item in items}

    async def close(self) -> None:
        await self._client.close()
