"""Shared fixtures: temporary SQLite stores, in-memory object storage, file builders."""

import os
import tempfile
from typing import Dict, List, Optional

import pandas as pd
import pytest

from corpus_engine.clients import StorageError, StorageObjectNotFoundError, StorageResult
from corpus_engine.models import CandidateRecord
from corpus_engine.models.vocabulary import Domain, SourceType, Theme
from corpus_engine.stores import sqlite_stores

CSV_COLUMNS = [
    "language", "script", "country", "region_dialect", "source_type", "source_ref",
    "collection_date", "text", "domain", "topic", "theme", "sensitive_characteristic",
    "safety_flag", "pii_removed", "notes",
]


class InMemoryStorage:
    """Object storage double with the MinIOStorageClient interface."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail_puts = False

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        if self.fail_puts:
            raise StorageError(f"Failed to store {path}: storage unavailable")
        self.objects[path] = data
        return StorageResult(storage_key=path, success=True)

    async def get_retrieval_url(self, storage_key: str, ttl_seconds: int) -> str:
        if storage_key not in self.objects:
            raise StorageObjectNotFoundError(f"Object not found: {storage_key}")
        return f"https://storage.test/{storage_key}?expires={ttl_seconds}"


def sentence_row(text: str, **overrides) -> Dict[str, str]:
    """A valid data-collection row with ``text``."""
    row = {
        "language": "hausa",
        "script": "latin",
        "country": "Nigeria",
        "region_dialect": "Kano",
        "source_type": "community",
        "source_ref": "field-notes",
        "collection_date": "2024-03-01",
        "text": text,
        "domain": "education",
        "topic": "schooling",
        "theme": "stereotypes",
        "sensitive_characteristic": "gender",
        "safety_flag": "safe",
        "pii_removed": "true",
        "notes": "",
    }
    row.update(overrides)
    return row


def build_csv(rows: List[Dict[str, str]], columns: Optional[List[str]] = None) -> bytes:
    """Render rows as CSV bytes with a header line."""
    return pd.DataFrame(rows, columns=columns or CSV_COLUMNS).to_csv(index=False).encode("utf-8")


def make_candidate(row_number: int, text: str, language: str = "hausa") -> CandidateRecord:
    return CandidateRecord(
        row_number=row_number,
        text=text,
        language=language,
        country="Nigeria",
        source_type=SourceType.COMMUNITY,
        domain=Domain.EDUCATION,
        theme=Theme.STEREOTYPES,
    )


@pytest.fixture
def temp_db_path():
    """Create a temporary database file for testing."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    # Cleanup
    if os.path.exists(path):
        os.remove(path)


@pytest.fixture
async def stores(temp_db_path):
    """All stores on one temporary SQLite database."""
    opened = sqlite_stores(temp_db_path)
    yield opened
    await opened.close()


@pytest.fixture
def storage():
    return InMemoryStorage()
