"""Integration tests for the Cosmos DB stores.

These tests require actual Cosmos DB credentials and connectivity.
They verify:
- Container creation with partition keys and the unique text key
- Duplicate lookups and unordered bulk inserts
- Tracking record updates and per-owner statistics
- ETag-based compare-and-swap for annotation sessions
"""

import os
import uuid
from datetime import datetime, timezone

import pytest

from conftest import make_candidate
from corpus_engine.clients.cosmosdb_client import CosmosDBClient
from corpus_engine.models import (
    AnnotationSession,
    DocumentOutcome,
    DocumentUpload,
    SessionStatus,
    UploadStatus,
)
from corpus_engine.stores import (
    CosmosDocumentUploadStore,
    CosmosSentenceStore,
    CosmosSessionStore,
)

DATABASE_NAME = os.environ.get("COSMOSDB_TEST_DATABASE", "bias_corpus_test")


def cosmos_credentials_available() -> bool:
    """Check if Cosmos DB credentials are available."""
    return bool(os.environ.get("COSMOSDB_ENDPOINT") and os.environ.get("COSMOSDB_KEY"))


# Skip all tests if credentials not available
pytestmark = pytest.mark.skipif(
    not cosmos_credentials_available(),
    reason="Cosmos DB credentials not configured (COSMOSDB_ENDPOINT, COSMOSDB_KEY)",
)


async def _test_client(partition_key_path, unique_key_paths=None):
    client = CosmosDBClient(
        endpoint=os.environ["COSMOSDB_ENDPOINT"],
        key=os.environ["COSMOSDB_KEY"],
        database_name=DATABASE_NAME,
        container_name=f"test-container-{uuid.uuid4().hex[:8]}",
        partition_key_path=partition_key_path,
        unique_key_paths=unique_key_paths,
    )
    await client.connect()
    return client


async def _drop(client):
    # Cleanup: delete test container
    try:
        if client._container:
            await client._database.delete_container(client._container_name)
    except Exception as e:
        print(f"Cleanup warning: {e}")
    await client.close()


class TestCosmosSentenceStore:
    """Test the corpus container."""

    @pytest.fixture
    async def sentence_store(self):
        client = await _test_client("/language", ["/text"])
        yield CosmosSentenceStore(client)
        await _drop(client)

    @pytest.mark.asyncio
    async def test_insert_and_find_existing(self, sentence_store):
        """Test that inserted text is found by the existence query."""
        documents = [make_candidate(i, f"text {i}").to_document("batch-1", "collector-1") for i in (1, 2)]

        outcome = await sentence_store.insert_many_unordered(documents)
        existing = await sentence_store.find_existing_by_text(["text 1", "text 2", "text 3"])

        assert len(outcome.inserted) == 2
        assert outcome.errors == []
        assert set(existing) == {"text 1", "text 2"}
        assert existing["text 1"].document_id == "batch-1"

        print(f"Found existing: {existing}")

    @pytest.mark.asyncio
    async def test_unique_key_rejects_repeat_within_language(self, sentence_store):
        """Test that the unique key rejects repeated text without stopping siblings."""
        documents = [make_candidate(i, text).to_document("batch-1", None) for i, text in enumerate(["a", "a", "b"])]

        outcome = await sentence_store.insert_many_unordered(documents)

        assert len(outcome.inserted) == 2
        assert [index for index, _ in outcome.errors] == [1]

    @pytest.mark.asyncio
    async def test_mark_exported_only_once(self, sentence_store):
        """Test that exported_at is written only for unexported sentences."""
        outcome = await sentence_store.insert_many_unordered([make_candidate(1, "x").to_document("b", None)])
        sentence_id = outcome.inserted[0].id
        first = datetime(2026, 1, 1, tzinfo=timezone.utc)

        assert await sentence_store.mark_exported([sentence_id], first) == 1
        assert await sentence_store.mark_exported([sentence_id], datetime.now(timezone.utc)) == 0
        assert (await sentence_store.get_many([sentence_id]))[0].exported_at == first


class TestCosmosDocumentUploadStore:
    """Test the tracking ledger container."""

    @pytest.fixture
    async def document_store(self):
        client = await _test_client("/user_id")
        yield CosmosDocumentUploadStore(client)
        await _drop(client)

    @pytest.mark.asyncio
    async def test_apply_outcome_and_stats(self, document_store):
        """Test the terminal update and per-owner statistics."""
        now = datetime.now(timezone.utc)
        document_id = str(uuid.uuid4())
        await document_store.insert(DocumentUpload(
            document_id=document_id,
            user_id="owner-1",
            original_filename="batch.csv",
            s3_key=f"csv-uploads/hausa/owner-1/{document_id}-batch.csv",
            status=UploadStatus.PROCESSING,
            created_at=now,
            updated_at=now,
        ))

        updated = await document_store.apply_outcome(
            document_id,
            DocumentOutcome(status=UploadStatus.COMPLETED, total_rows=3, successful_inserts=2, failed_inserts=1),
            updated_at=datetime.now(timezone.utc),
        )
        stats = await document_store.stats("owner-1")

        assert updated.status == UploadStatus.COMPLETED
        assert stats.total_documents == 1
        assert stats.total_successful_inserts == 2
        assert await document_store.apply_outcome(
            "missing", DocumentOutcome(status=UploadStatus.FAILED), updated_at=now
        ) is None

        print(f"Stats: {stats}")


class TestCosmosSessionStore:
    """Test compare-and-swap on the sessions container."""

    @pytest.fixture
    async def session_store(self):
        client = await _test_client("/user_id")
        yield CosmosSessionStore(client)
        await _drop(client)

    @pytest.mark.asyncio
    async def test_stale_etag_is_refused(self, session_store):
        """Test that a write with an outdated ETag is not applied."""
        now = datetime.now(timezone.utc)
        session = await session_store.insert(AnnotationSession(
            id=str(uuid.uuid4()),
            name="cosmos",
            user_id="owner-1",
            status=SessionStatus.ACTIVE,
            started_at=now,
            last_activity_at=now,
            created_at=now,
        ))
        copy_one = await session_store.get(session.id, "owner-1")
        copy_two = await session_store.get(session.id, "owner-1")

        copy_one.annotated_sentence_ids.append("s-1")
        assert await session_store.replace_if_unchanged(copy_one) is not None
        copy_two.name = "stale"
        assert await session_store.replace_if_unchanged(copy_two) is None

        stored = await session_store.get(session.id, "owner-1")
        assert stored.annotated_sentence_ids == ["s-1"]
        assert stored.name == "cosmos"


class TestCosmosDBClientErrors:
    """Test error handling in CosmosDBClient."""

    @pytest.mark.asyncio
    async def test_query_without_connection_raises(self):
        """Test that query without connection raises RuntimeError."""
        client = CosmosDBClient(
            endpoint=os.environ["COSMOSDB_ENDPOINT"],
            key=os.environ["COSMOSDB_KEY"],
            database_name=DATABASE_NAME,
            container_name="test-container",
        )

        with pytest.raises(RuntimeError, match="not connected"):
            await client.query_items("SELECT * FROM c")
