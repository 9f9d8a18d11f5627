"""Azure Cosmos DB client for the corpus and ledger containers."""

import uuid
from typing import Any, Optional

from azure.core import MatchConditions
from azure.cosmos.aio import CosmosClient
from azure.cosmos.aio._container import ContainerProxy
from azure.cosmos.aio._database import DatabaseProxy
from azure.cosmos.exceptions import CosmosResourceNotFoundError


class CosmosDBClient:
    """Async Cosmos DB client with connection management.

    Wraps a single container of the NoSQL API.
    Supports async context manager pattern for proper resource cleanup.
    """

    def __init__(
        self,
        endpoint: str,
        key: str,
        database_name: str,
        container_name: str,
        partition_key_path: str = "/user_id",
        unique_key_paths: Optional[list[str]] = None,
    ):
        """Initialize the Cosmos DB client.

        Args:
            endpoint: Cosmos DB account endpoint URL
            key: Cosmos DB account key
            database_name: Name of the database to use
            container_name: Name of the container to use
            partition_key_path: Path to the partition key field (default: /user_id)
            unique_key_paths: Paths that must be unique within a logical partition,
                applied only when the container is created.
        """
        self._endpoint = endpoint
        self._key = key
        self._database_name = database_name
        self._container_name = container_name
        self._partition_key_path = partition_key_path
        self._unique_key_paths = unique_key_paths or []

        self._client: Optional[CosmosClient] = None
        self._database: Optional[DatabaseProxy] = None
        self._container: Optional[ContainerProxy] = None

    @property
    def partition_key_field(self) -> str:
        """Top-level item field holding the partition key value."""
        return self._partition_key_path.lstrip("/")

    async def connect(self) -> None:
        """Establish connection and ensure database/container exist."""
        self._client = CosmosClient(url=self._endpoint, credential=self._key)
        await self._client.__aenter__()

        # Get or create database
        try:
            self._database = self._client.get_database_client(self._database_name)
            # Verify database exists by reading it
            await self._database.read()
        except CosmosResourceNotFoundError:
            self._database = await self._client.create_database(self._database_name)

        # Get or create container
        try:
            self._container = self._database.get_container_client(self._container_name)
            # Verify container exists by reading it
            await self._container.read()
        except CosmosResourceNotFoundError:
            unique_key_policy = None
            if self._unique_key_paths:
                unique_key_policy = {
                    "uniqueKeys": [{"paths": [path]} for path in self._unique_key_paths]
                }
            self._container = await self._database.create_container(
                id=self._container_name,
                partition_key={"paths": [self._partition_key_path], "kind": "Hash"},
                unique_key_policy=unique_key_policy,
            )

    async def close(self) -> None:
        """Close the Cosmos DB connection."""
        if self._client:
            await self._client.close()
            self._client = None
            self._database = None
            self._container = None

    async def __aenter__(self) -> "CosmosDBClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Async context manager exit with cleanup."""
        await self.close()
        return False

    def _require_container(self) -> ContainerProxy:
        if self._container is None:
            raise RuntimeError("CosmosDB client not connected. Call connect() first.")
        return self._container

    async def create_item(self, item: dict[str, Any]) -> dict[str, Any]:
        """Create a new item; fails if the id or a unique key already exists.

        Raises:
            RuntimeError: If client is not connected.
            CosmosResourceExistsError: If the item conflicts with an existing one.
        """
        container = self._require_container()
        if "id" not in item:
            item["id"] = str(uuid.uuid4())
        result = await container.create_item(body=item)
        return dict(result)

    async def upsert_item(self, item: dict[str, Any]) -> dict[str, Any]:
        """Insert or update an item in the container.

        Args:
            item: Dictionary containing the item data. Must include 'id' field
                  or one will be generated. Must include the partition key field.

        Returns:
            The upserted item with any system-generated fields.

        Raises:
            RuntimeError: If client is not connected.
        """
        container = self._require_container()

        # Ensure item has an id
        if "id" not in item:
            item["id"] = str(uuid.uuid4())

        result = await container.upsert_item(body=item)
        return dict(result)

    async def replace_item_if_match(self, item: dict[str, Any], etag: str) -> dict[str, Any]:
        """Replace an item only if it is unchanged since ``etag`` was read.

        Raises:
            RuntimeError: If client is not connected.
            CosmosAccessConditionFailedError: If the item was modified meanwhile.
        """
        container = self._require_container()
        result = await container.replace_item(
            item=item["id"],
            body=item,
            etag=etag,
            match_condition=MatchConditions.IfNotModified,
        )
        return dict(result)

    async def patch_item(
        self,
        item_id: str,
        partition_key: Any,
        operations: list[dict[str, Any]],
        filter_predicate: Optional[str] = None,
    ) -> dict[str, Any]:
        """Apply partial-document operations to one item.

        Raises:
            RuntimeError: If client is not connected.
            CosmosAccessConditionFailedError: If ``filter_predicate`` does not match.
        """
        container = self._require_container()
        result = await container.patch_item(
            item=item_id,
            partition_key=partition_key,
            patch_operations=operations,
            filter_predicate=filter_predicate,
        )
        return dict(result)

    async def query_items(
        self,
        query: str,
        parameters: Optional[list[dict[str, Any]]] = None,
        partition_key: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Query items from the container.

        Args:
            query: SQL query string
            parameters: Optional query parameters as list of {"name": "@param", "value": value}
            partition_key: Optional partition key to scope the query

        Returns:
            List of matching items.

        Raises:
            RuntimeError: If client is not connected.
        """
        container = self._require_container()

        query_options = {}
        if partition_key is not None:
            query_options["partition_key"] = partition_key

        items = []
        async for item in container.query_items(
            query=query,
            parameters=parameters,
            **query_options,
        ):
            items.append(dict(item))

        return items

    async def read_item(self, item_id: str, partition_key: str) -> dict[str, Any]:
        """Read a single item by id and partition key.

        Raises:
            RuntimeError: If client is not connected.
            CosmosResourceNotFoundError: If item not found.
        """
        container = self._require_container()
        result = await container.read_item(item=item_id, partition_key=partition_key)
        return dict(result)

    async def delete_item(self, item_id: str, partition_key: Any) -> None:
        """Delete an item by id and partition key.

        Raises:
            RuntimeError: If client is not connected.
            CosmosResourceNotFoundError: If item not found.
        """
        container = self._require_container()
        await container.delete_item(item=item_id, partition_key=partition_key)
