"""Client modules for external services."""

from corpus_engine.clients.cosmosdb_client import CosmosDBClient
from corpus_engine.clients.minio_client import (
    MinIOStorageClient,
    StorageError,
    StorageObjectNotFoundError,
    StorageResult,
)
from corpus_engine.clients.sqlite_client import SqliteClient

__all__ = [
    "CosmosDBClient",
    "MinIOStorageClient",
    "SqliteClient",
    "StorageError",
    "StorageObjectNotFoundError",
    "StorageResult",
]
