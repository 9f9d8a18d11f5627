"""Unordered bulk insertion of new candidates into the corpus."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from corpus_engine.models import CandidateRecord, CorpusRecord
from corpus_engine.stores import SentenceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchError:
    """A failed insert.

    ``index`` is the position within the attempted batch, or None for a
    failure that prevented the whole batch from being written.
    """

    index: Optional[int]
    error: str


@dataclass(frozen=True)
class BatchInsertResult:
    """Outcome of one bulk insert."""

    attempted: int
    inserted_records: List[CorpusRecord] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_records)

    @property
    def total_failure(self) -> bool:
        return any(error.index is None for error in self.errors)

    @property
    def failed_count(self) -> int:
        return self.attempted - self.inserted_count


class BulkPersister:
    """Writes a batch of candidates in one unordered operation."""

    def __init__(self, sentence_store: SentenceStore):
        self._sentence_store = sentence_store

    async def insert_batch(
        self,
        records: List[CandidateRecord],
        document_id: str,
        collector_id: Optional[str] = None,
    ) -> BatchInsertResult:
        """Insert ``records`` under the batch ``document_id``.

        A rejected record never stops its siblings. A failure before any
        write is reported as one batch-level error instead of raising.

        Args:
            records: Candidates that passed duplicate detection, in order.
            document_id: Batch identifier stamped on every inserted record.
            collector_id: Owner of the upload.

        Returns:
            BatchInsertResult with per-index errors.
        """
        if not records:
            return BatchInsertResult(attempted=0)

        documents = [record.to_document(document_id, collector_id) for record in records]

        try:
            outcome = await self._sentence_store.insert_many_unordered(documents)
        except Exception as e:
            logger.error(f"Bulk insert of {len(documents)} records for {document_id} failed: {e}")
            return BatchInsertResult(
                attempted=len(documents),
                errors=[BatchError(index=None, error=str(e) or "Unknown database error")],
            )

        errors = [BatchError(index=index, error=message) for index, message in outcome.errors]
        if errors:
            logger.warning(
                f"Bulk insert for {document_id}: {len(outcome.inserted)} inserted, {len(errors)} rejected"
            )
        else:
            logger.info(f"Bulk insert for {document_id}: {len(outcome.inserted)} inserted")

        return BatchInsertResult(
            attempted=len(documents),
            inserted_records=list(outcome.inserted),
            errors=errors,
        )
