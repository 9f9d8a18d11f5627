"""Tests for the bulk persister.

These tests verify:
- Every inserted record carries the caller's batch id and collector
- A rejected record does not stop its siblings
- A failure before any write becomes one batch-level error
"""

import sqlite3

import pytest

from conftest import make_candidate
from corpus_engine.ingestion import BulkPersister
from corpus_engine.stores import SqliteSentenceStore


class UnreachableSentenceStore(SqliteSentenceStore):
    """Bulk insert fails before writing anything."""

    async def insert_many_unordered(self, documents):
        raise sqlite3.OperationalError("unable to open database file")


class TestBulkPersister:
    """Test BulkPersister insert semantics."""

    @pytest.mark.asyncio
    async def test_insert_stamps_batch_id(self, stores):
        """Test that records are stamped with the supplied batch id."""
        persister = BulkPersister(stores.sentences)

        result = await persister.insert_batch(
            [make_candidate(1, "one"), make_candidate(2, "two")],
            document_id="batch-42",
            collector_id="collector-7",
        )

        assert result.inserted_count == 2
        assert result.failed_count == 0
        assert result.errors == []
        assert all(r.document_id == "batch-42" for r in result.inserted_records)
        assert all(r.collector_id == "collector-7" for r in result.inserted_records)
        assert await stores.sentences.count_by_document("batch-42") == 2

        print(f"Inserted ids: {[r.id for r in result.inserted_records]}")

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_siblings(self, stores):
        """Test that a uniqueness violation only rejects the offending record."""
        persister = BulkPersister(stores.sentences)
        batch = [make_candidate(1, "alpha"), make_candidate(2, "alpha"), make_candidate(3, "beta")]

        result = await persister.insert_batch(batch, document_id="batch-1")

        assert result.attempted == 3
        assert result.inserted_count == 2
        assert result.failed_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].index == 1
        assert "UNIQUE" in result.errors[0].error
        assert result.total_failure is False
        assert sorted(r.text for r in result.inserted_records) == ["alpha", "beta"]

        print(f"Rejected index {result.errors[0].index}: {result.errors[0].error}")

    @pytest.mark.asyncio
    async def test_conflict_with_existing_corpus(self, stores):
        """Test that a record already in the corpus is rejected by index."""
        persister = BulkPersister(stores.sentences)
        await persister.insert_batch([make_candidate(1, "kept")], document_id="first")

        result = await persister.insert_batch(
            [make_candidate(1, "fresh"), make_candidate(2, "kept")],
            document_id="second",
        )

        assert result.inserted_count == 1
        assert [e.index for e in result.errors] == [1]
        assert await stores.sentences.count_by_document("first") == 1

    @pytest.mark.asyncio
    async def test_total_failure_yields_single_error(self, stores):
        """Test that a connection failure is reported, not raised."""
        persister = BulkPersister(UnreachableSentenceStore(stores.sqlite_client))

        result = await persister.insert_batch(
            [make_candidate(1, "a"), make_candidate(2, "b")],
            document_id="batch-x",
        )

        assert result.inserted_count == 0
        assert result.failed_count == 2
        assert len(result.errors) == 1
        assert result.errors[0].index is None
        assert "unable to open database file" in result.errors[0].error
        assert result.total_failure is True

    @pytest.mark.asyncio
    async def test_empty_batch_is_a_no_op(self, stores):
        """Test that nothing is attempted for an empty batch."""
        result = await BulkPersister(stores.sentences).insert_batch([], document_id="empty")

        assert result.attempted == 0
        assert result.inserted_count == 0
        assert result.errors == []
