"""Set-based duplicate detection against the corpus."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from corpus_engine.models import CandidateRecord, DuplicateDetail, ErrorDetail
from corpus_engine.stores import ExistingSentence, SentenceStore

logger = logging.getLogger(__name__)

MISSING_TEXT_ERROR = "Missing required field: text"


@dataclass(frozen=True)
class PartitionResult:
    """Candidates split into insertable, duplicate and invalid rows."""

    valid: List[CandidateRecord] = field(default_factory=list)
    duplicates: List[DuplicateDetail] = field(default_factory=list)
    errors: List[ErrorDetail] = field(default_factory=list)


class DuplicateDetector:
    """Partitions candidates with a single existence query per batch.

    The duplicate key is the trimmed text alone; ``original_content`` does not
    participate.
    """

    def __init__(self, sentence_store: SentenceStore):
        self._sentence_store = sentence_store

    async def lookup_existing(self, keys: List[str]) -> Dict[str, ExistingSentence]:
        """Bulk existence query. Fails open: a lookup error means no duplicates."""
        if not keys:
            return {}
        try:
            return await self._sentence_store.find_existing_by_text(keys)
        except Exception as e:
            logger.warning(f"Duplicate lookup failed, treating {len(keys)} rows as new: {e}")
            return {}

    async def partition(self, candidates: List[CandidateRecord]) -> PartitionResult:
        """Split candidates into valid, duplicate and validation-error sets.

        Args:
            candidates: Parsed rows in source order.

        Returns:
            PartitionResult whose detail entries carry the source row numbers.
        """
        result = PartitionResult()

        checkable: List[CandidateRecord] = []
        for candidate in candidates:
            if candidate.duplicate_key:
                checkable.append(candidate)
            else:
                result.errors.append(ErrorDetail(row_number=candidate.row_number, error=MISSING_TEXT_ERROR))

        keys = list(dict.fromkeys(candidate.duplicate_key for candidate in checkable))
        existing = await self.lookup_existing(keys)

        for candidate in checkable:
            match = existing.get(candidate.duplicate_key)
            if match is None:
                result.valid.append(candidate)
                continue
            result.duplicates.append(
                DuplicateDetail(
                    text=candidate.duplicate_key,
                    existing_document_id=match.document_id,
                    existing_sentence_id=match.sentence_id,
                    row_number=candidate.row_number,
                )
            )

        logger.info(
            f"Partitioned {len(candidates)} rows: {len(result.valid)} new, "
            f"{len(result.duplicates)} duplicates, {len(result.errors)} invalid"
        )
        return result
