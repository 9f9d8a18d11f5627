"""Tests for the upload pipeline.

These tests verify:
- Upload outcomes for fresh files and re-uploads
- Row-count conservation: inserted + duplicates + failed == total_rows
- The tracking record never stays in processing, whatever fails
- Persistence errors are reported against file row numbers
"""

import asyncio
import sqlite3

import pytest

from conftest import build_csv, sentence_row
from corpus_engine.ingestion import (
    EmptyUploadError,
    RecordParseError,
    UnsupportedFileFormatError,
    UploadPipeline,
    UploadProcessingError,
)
from corpus_engine.models import UploadStatus
from corpus_engine.services import DocumentTrackingService
from corpus_engine.stores import SqliteSentenceStore


class SlowLookupStore(SqliteSentenceStore):
    """Existence query that never returns in time."""

    async def find_existing_by_text(self, texts):
        await asyncio.sleep(5)
        return {}


class BrokenLookupStore(SqliteSentenceStore):
    """Existence query always fails."""

    async def find_existing_by_text(self, texts):
        raise sqlite3.OperationalError("database is locked")


class UnreachableInsertStore(SqliteSentenceStore):
    """Bulk insert fails before writing anything."""

    async def insert_many_unordered(self, documents):
        raise sqlite3.OperationalError("unable to open database file")


class StallAfterInsertStore(SqliteSentenceStore):
    """Bulk insert commits every row, then stalls before returning."""

    async def insert_many_unordered(self, documents):
        outcome = await super().insert_many_unordered(documents)
        await asyncio.sleep(5)
        return outcome


def _pipeline(stores, sentence_store=None, storage=None, timeout_seconds=120.0):
    tracking = DocumentTrackingService(stores.documents, storage=storage)
    return UploadPipeline(
        sentence_store or stores.sentences,
        tracking,
        storage=storage,
        timeout_seconds=timeout_seconds,
    )


def _assert_conserved(record):
    assert record.successful_inserts + record.duplicate_count + record.failed_inserts == record.total_rows


async def _only_document(stores):
    documents = await stores.documents.list()
    assert len(documents) == 1
    return documents[0]


class TestUploadOutcomes:
    """Test upload results for fresh and repeated files."""

    @pytest.mark.asyncio
    async def test_blank_text_row_is_a_validation_error(self, stores, storage):
        """A 3-row file with a blank second text: 2 inserted, 1 error at row 2.

        Blank text rows survive parsing, so total_rows counts them (3 here).
        """
        pipeline = _pipeline(stores, storage=storage)
        data = build_csv([sentence_row("Mata su yi shiru."), sentence_row(""), sentence_row("Maza su yi aiki.")])

        result = await pipeline.process_upload(data, "batch.csv", user_id="user-1")

        assert result.status == UploadStatus.COMPLETED
        assert result.total_rows == 3
        assert result.inserted_count == 2
        assert result.duplicates_found == 0
        assert result.errors_found == 1
        assert [(e.row_number, e.error) for e in result.errors] == [(2, "Missing required field: text")]

        record = await stores.documents.get(result.document_id)
        assert record.status == UploadStatus.COMPLETED
        assert record.total_rows == 3
        _assert_conserved(record)

        print(f"Upload {result.document_id}: {result.to_response()}")

    @pytest.mark.asyncio
    async def test_reupload_reports_duplicates_of_first_batch(self, stores, storage):
        """Re-uploading the same rows inserts nothing and points at the first batch."""
        pipeline = _pipeline(stores, storage=storage)
        data = build_csv([sentence_row("Mata su yi shiru."), sentence_row(""), sentence_row("Maza su yi aiki.")])
        first = await pipeline.process_upload(data, "batch.csv", user_id="user-1")

        again = build_csv([sentence_row("Mata su yi shiru."), sentence_row("Maza su yi aiki.")])
        second = await pipeline.process_upload(again, "batch-again.csv", user_id="user-1")

        assert second.inserted_count == 0
        assert second.duplicates_found == 2
        assert [d.row_number for d in second.duplicates] == [1, 2]
        assert all(d.existing_document_id == first.document_id for d in second.duplicates)

        record = await stores.documents.get(second.document_id)
        assert record.duplicate_count == 2
        _assert_conserved(record)

    @pytest.mark.asyncio
    async def test_identical_file_twice(self, stores):
        """Second identical upload: zero inserts, duplicates equal the first inserts."""
        pipeline = _pipeline(stores)
        data = build_csv([sentence_row(f"sentence {i}") for i in range(1, 6)])

        first = await pipeline.process_upload(data, "same.csv", user_id="user-1")
        second = await pipeline.process_upload(data, "same.csv", user_id="user-1")

        assert first.inserted_count == 5
        assert second.inserted_count == 0
        assert second.duplicates_found == first.inserted_count

    @pytest.mark.asyncio
    async def test_persistence_errors_map_to_file_rows(self, stores):
        """Test that an in-file repeat is rejected at its own row number."""
        pipeline = _pipeline(stores)
        await pipeline.process_upload(build_csv([sentence_row("Y")]), "seed.csv", user_id="user-1")
        data = build_csv([
            sentence_row("X"),
            sentence_row("Y"),
            sentence_row(""),
            sentence_row("Z"),
            sentence_row("Z"),
        ])

        result = await pipeline.process_upload(data, "mixed.csv", user_id="user-1")

        assert result.inserted_count == 2
        assert [d.row_number for d in result.duplicates] == [2]
        assert [e.row_number for e in result.errors] == [3, 5]
        assert "UNIQUE" in result.errors[1].error
        record = await stores.documents.get(result.document_id)
        _assert_conserved(record)

        print(f"Errors: {[e.to_dict() for e in result.errors]}")

    @pytest.mark.asyncio
    async def test_fail_open_lookup_relies_on_unique_index(self, stores):
        """Test that existing text still fails to insert when the lookup is down."""
        await _pipeline(stores).process_upload(build_csv([sentence_row("old")]), "seed.csv", user_id="user-1")
        pipeline = _pipeline(stores, sentence_store=BrokenLookupStore(stores.sqlite_client))

        result = await pipeline.process_upload(
            build_csv([sentence_row("old"), sentence_row("new")]), "again.csv", user_id="user-1"
        )

        assert result.status == UploadStatus.COMPLETED
        assert result.inserted_count == 1
        assert result.duplicates_found == 0
        assert [e.row_number for e in result.errors] == [1]

    @pytest.mark.asyncio
    async def test_records_carry_batch_and_collector(self, stores):
        """Test that inserted corpus records belong to the upload's batch."""
        result = await _pipeline(stores).process_upload(
            build_csv([sentence_row("a"), sentence_row("b")]), "batch.csv", user_id="collector-9"
        )

        assert await stores.sentences.count_by_document(result.document_id) == 2
        rows = stores.sqlite_client.execute_query(
            "SELECT DISTINCT collector_id FROM sentences WHERE document_id = ?",
            (result.document_id,),
        )
        assert [row["collector_id"] for row in rows] == ["collector-9"]

    @pytest.mark.asyncio
    async def test_raw_file_is_stored_under_upload_key(self, stores, storage):
        """Test that the raw bytes land under the key reported to the caller."""
        data = build_csv([sentence_row("a")])

        result = await _pipeline(stores, storage=storage).process_upload(
            data, "batch.csv", user_id="user-1", language="hausa", mime_type="text/csv"
        )

        assert result.s3_key == f"csv-uploads/hausa/user-1/{result.document_id}-batch.csv"
        assert storage.objects[result.s3_key] == data
        record = await stores.documents.get(result.document_id)
        assert record.s3_key == result.s3_key
        assert record.file_size == len(data)
        assert record.mime_type == "text/csv"

    @pytest.mark.asyncio
    async def test_response_shape(self, stores):
        """Test the keys of the caller-facing response."""
        result = await _pipeline(stores).process_upload(build_csv([sentence_row("a")]), "b.csv", user_id="u")

        response = result.to_response()

        assert set(response) == {
            "document_id", "status", "s3_key", "total_rows", "inserted_count", "duplicates_found",
            "errors_found", "processing_time_ms", "duplicates", "errors",
        }
        assert response["status"] == "completed"
        assert response["processing_time_ms"] >= 0


class TestUploadFailures:
    """Test that every failure leaves the tracking record terminal."""

    @pytest.mark.asyncio
    async def test_unsupported_extension(self, stores):
        """Test that an unsupported file is rejected and recorded as failed."""
        with pytest.raises(UnsupportedFileFormatError):
            await _pipeline(stores).process_upload(b"{}", "sentences.json", user_id="user-1")

        record = await _only_document(stores)
        assert record.status == UploadStatus.FAILED
        assert record.total_rows == 0
        assert "json" in record.errors[-1].error

    @pytest.mark.asyncio
    async def test_unreadable_file(self, stores):
        """Test that corrupt workbook bytes fail with RecordParseError."""
        with pytest.raises(RecordParseError):
            await _pipeline(stores).process_upload(b"not a workbook", "sheet.xlsx", user_id="user-1")

        assert (await _only_document(stores)).status == UploadStatus.FAILED

    @pytest.mark.asyncio
    async def test_empty_upload(self, stores, storage):
        """Test that a file without usable rows is rejected before storing it."""
        data = build_csv([sentence_row("dropped", domain="not-a-domain")])

        with pytest.raises(EmptyUploadError):
            await _pipeline(stores, storage=storage).process_upload(data, "empty.csv", user_id="user-1")

        record = await _only_document(stores)
        assert record.status == UploadStatus.FAILED
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_timeout(self, stores):
        """Test that a stalled upload times out and is recorded as failed."""
        pipeline = _pipeline(stores, sentence_store=SlowLookupStore(stores.sqlite_client), timeout_seconds=0.05)

        with pytest.raises(UploadProcessingError, match="timed out"):
            await pipeline.process_upload(build_csv([sentence_row("a")]), "slow.csv", user_id="user-1")

        record = await _only_document(stores)
        assert record.status == UploadStatus.FAILED
        assert record.total_rows == 1
        _assert_conserved(record)

    @pytest.mark.asyncio
    async def test_timeout_after_commit_counts_stored_rows(self, stores):
        """Test that rows committed before a timeout are counted as inserted."""
        pipeline = _pipeline(stores, sentence_store=StallAfterInsertStore(stores.sqlite_client), timeout_seconds=0.2)
        data = build_csv([sentence_row("a"), sentence_row(""), sentence_row("b")])

        with pytest.raises(UploadProcessingError, match="timed out"):
            await pipeline.process_upload(data, "stalled.csv", user_id="user-1")

        record = await _only_document(stores)
        stored = await stores.sentences.count_by_document(record.document_id)
        assert record.status == UploadStatus.FAILED
        assert stored == 2
        assert record.successful_inserts == stored
        assert record.failed_inserts == 1
        _assert_conserved(record)

    @pytest.mark.asyncio
    async def test_storage_failure(self, stores, storage):
        """Test that a failed raw-file write aborts before any insert."""
        storage.fail_puts = True

        with pytest.raises(UploadProcessingError):
            await _pipeline(stores, storage=storage).process_upload(
                build_csv([sentence_row("a"), sentence_row("b")]), "batch.csv", user_id="user-1"
            )

        record = await _only_document(stores)
        assert record.status == UploadStatus.FAILED
        assert record.successful_inserts == 0
        assert await stores.sentences.count_by_document(record.document_id) == 0
        _assert_conserved(record)

    @pytest.mark.asyncio
    async def test_total_persistence_failure(self, stores):
        """Test that a batch-wide insert failure is a failed result, not an exception."""
        pipeline = _pipeline(stores, sentence_store=UnreachableInsertStore(stores.sqlite_client))

        result = await pipeline.process_upload(
            build_csv([sentence_row("a"), sentence_row("b")]), "batch.csv", user_id="user-1"
        )

        assert result.status == UploadStatus.FAILED
        assert result.inserted_count == 0
        assert result.errors_found == 2
        assert [e.row_number for e in result.errors] == [0]
        record = await stores.documents.get(result.document_id)
        assert record.status == UploadStatus.FAILED
        _assert_conserved(record)

    @pytest.mark.asyncio
    async def test_cancellation_is_recorded(self, stores):
        """Test that a cancelled upload is still closed as failed."""
        pipeline = _pipeline(stores, sentence_store=SlowLookupStore(stores.sqlite_client))
        task = asyncio.create_task(
            pipeline.process_upload(build_csv([sentence_row("a")]), "batch.csv", user_id="user-1")
        )
        await asyncio.sleep(0.1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await _only_document(stores)).status == UploadStatus.FAILED


class TestDeleteBatch:
    """Test removing one upload's corpus records."""

    @pytest.mark.asyncio
    async def test_delete_batch(self, stores):
        """Test that only the chosen batch and its tracking record are removed."""
        pipeline = _pipeline(stores)
        keep = await pipeline.process_upload(build_csv([sentence_row("keep")]), "k.csv", user_id="u")
        drop = await pipeline.process_upload(
            build_csv([sentence_row("drop 1"), sentence_row("drop 2")]), "d.csv", user_id="u"
        )

        deleted = await pipeline.delete_batch(drop.document_id)

        assert deleted == 2
        assert await stores.documents.get(drop.document_id) is None
        assert await stores.sentences.count_by_document(keep.document_id) == 1
