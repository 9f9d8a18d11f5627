"""Persistence collaborators for the corpus and both ledgers."""

import logging
from dataclasses import dataclass
from typing import Optional

from corpus_engine.clients import CosmosDBClient, SqliteClient
from corpus_engine.config import AppConfig
from corpus_engine.stores.base import (
    BulkWriteOutcome,
    ConcurrentModificationError,
    DocumentUploadStore,
    ExistingSentence,
    SentenceStore,
    SessionStore,
    UserStore,
)
from corpus_engine.stores.cosmos_store import (
    CosmosDocumentUploadStore,
    CosmosSentenceStore,
    CosmosSessionStore,
    CosmosUserStore,
)
from corpus_engine.stores.sqlite_store import (
    SqliteDocumentUploadStore,
    SqliteSentenceStore,
    SqliteSessionStore,
    SqliteUserStore,
    ensure_schema,
)

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    """The set of stores a backend provides."""

    sentences: SentenceStore
    documents: DocumentUploadStore
    sessions: SessionStore
    users: UserStore
    sqlite_client: Optional[SqliteClient] = None

    async def close(self) -> None:
        for store in (self.sentences, self.documents, self.sessions, self.users):
            await store.close()
        if self.sqlite_client is not None:
            self.sqlite_client.close()


def sqlite_stores(sqlite_path: str) -> Stores:
    """Open every store on one SQLite database, creating the schema if needed."""
    sqlite_client = SqliteClient(sqlite_path)
    ensure_schema(sqlite_client)
    return Stores(
        sentences=SqliteSentenceStore(sqlite_client),
        documents=SqliteDocumentUploadStore(sqlite_client),
        sessions=SqliteSessionStore(sqlite_client),
        users=SqliteUserStore(sqlite_client),
        sqlite_client=sqlite_client,
    )


async def open_stores(config: AppConfig) -> Stores:
    """Create the stores for the configured database backend.

    Raises:
        ValueError: If the backend is not ``sqlite`` or ``cosmosdb``.
    """
    backend = config.database.backend

    if backend == "sqlite":
        logger.info(f"Using SQLite backend at {config.database.sqlite_path}")
        return sqlite_stores(config.database.sqlite_path)

    if backend == "cosmosdb":
        cosmos = config.cosmosdb

        def _client(container_name: str, partition_key_path: str, unique_key_paths=None) -> CosmosDBClient:
            return CosmosDBClient(
                endpoint=cosmos.endpoint,
                key=cosmos.key,
                database_name=cosmos.database_name,
                container_name=container_name,
                partition_key_path=partition_key_path,
                unique_key_paths=unique_key_paths,
            )

        clients = [
            _client(cosmos.sentences_container, "/language", ["/text"]),
            _client(cosmos.documents_container, "/user_id"),
            _client(cosmos.sessions_container, "/user_id"),
            _client(cosmos.users_container, "/id"),
        ]
        for client in clients:
            await client.connect()

        logger.info(f"Using CosmosDB backend, database {cosmos.database_name}")
        return Stores(
            sentences=CosmosSentenceStore(clients[0]),
            documents=CosmosDocumentUploadStore(clients[1]),
            sessions=CosmosSessionStore(clients[2]),
            users=CosmosUserStore(clients[3]),
        )

    raise ValueError(f"Unknown database backend: {backend}")


__all__ = [
    "BulkWriteOutcome",
    "ConcurrentModificationError",
    "CosmosDocumentUploadStore",
    "CosmosSentenceStore",
    "CosmosSessionStore",
    "CosmosUserStore",
    "DocumentUploadStore",
    "ExistingSentence",
    "SentenceStore",
    "SessionStore",
    "SqliteDocumentUploadStore",
    "SqliteSentenceStore",
    "SqliteSessionStore",
    "SqliteUserStore",
    "Stores",
    "UserStore",
    "ensure_schema",
    "open_stores",
    "sqlite_stores",
]
