"""
Cosmos DB diagram storage.

The primary store of the persistence gateway. All diagrams of a user
live in one partition of a single container:

    {
        "id": "{diagram_id}",
        "partitionKey": "{user_id}",
        "type": "process_diagram",
        "user_id": "{user_id}",
        "name": "...",
        "xml_content": "...",
        "svg_content": "...",
        "thumbnail": "data:image/png;base64,..." | null,
        "created_at": "{iso_timestamp}",
        "updated_at": "{iso_timestamp}"
    }

Backend failures are translated into the storage exception hierarchy
so the gateway can classify them: a missing database or container is a
SchemaMissingError, 401 an AuthenticationError, 403 an AccessDeniedError.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from ..models import clean_updates, utc_now
from .base import (
    AccessDeniedError,
    AuthenticationError,
    CosmosAuthMethod,
    DiagramStorage,
    SchemaMissingError,
    StorageConfig,
    StorageError,
)

logger = logging.getLogger(__name__)

DOC_TYPE_DIAGRAM = "process_diagram"

_RECORD_FIELDS = (
    "id",
    "name",
    "xml_content",
    "svg_content",
    "thumbnail",
    "created_at",
    "updated_at",
)


def _get_credential(config: StorageConfig) -> Any:
    """Get the appropriate credential based on auth method.

    Raises:
        AuthenticationError: If no credential can be created
    """
    auth_method = config.cosmos_auth_method

    if auth_method == CosmosAuthMethod.KEY:
        if not config.cosmos_key:
            raise AuthenticationError("cosmos_key required for KEY authentication")
        return config.cosmos_key

    if auth_method == CosmosAuthMethod.DEFAULT_CREDENTIAL:
        from azure.identity.aio import DefaultAzureCredential

        return DefaultAzureCredential()

    if auth_method == CosmosAuthMethod.MANAGED_IDENTITY:
        from azure.identity.aio import ManagedIdentityCredential

        if config.azure_client_id:
            return ManagedIdentityCredential(client_id=config.azure_client_id)
        return ManagedIdentityCredential()

    if auth_method == CosmosAuthMethod.SERVICE_PRINCIPAL:
        if not all([config.azure_tenant_id, config.azure_client_id, config.azure_client_secret]):
            raise AuthenticationError(
                "azure_tenant_id, azure_client_id, and azure_client_secret "
                "required for SERVICE_PRINCIPAL authentication"
            )
        from azure.identity.aio import ClientSecretCredential

        return ClientSecretCredential(
            tenant_id=config.azure_tenant_id,
            client_id=config.azure_client_id,
            client_secret=config.azure_client_secret,
        )

    raise AuthenticationError(f"Unsupported auth method: {auth_method}")


def _raise_http_error(e: CosmosHttpResponseError, what: str) -> None:
    """Re-raise a Cosmos HTTP error, translating auth failures."""
    if e.status_code == 401:
        raise AuthenticationError(f"Authentication failed for Cosmos DB during {what}: {e}") from e
    if e.status_code == 403:
        raise AccessDeniedError(
            f"Permission denied during {what}. "
            f"Ensure your identity has 'Cosmos DB Built-in Data Contributor' role. Error: {e}"
        ) from e
    raise e


class CosmosDiagramStorage(DiagramStorage):
    """Cosmos DB diagram storage, partitioned per user."""

    name = "cosmos"

    def __init__(self, config: StorageConfig) -> None:
        if not config.cosmos_endpoint:
            raise StorageError("Cosmos endpoint is required")
        if not config.user_id:
            raise AuthenticationError("No authenticated user for Cosmos DB storage")

        self.config = config
        self.user_id = config.user_id

        self._credential: Any = None
        self._client: CosmosClient | None = None
        self._container: ContainerProxy | None = None
        self._initialized = False

    async def _ensure_initialized(self) -> ContainerProxy:
        """Ensure client and container are initialized."""
        if self._initialized and self._container is not None:
            return self._container

        self._credential = _get_credential(self.config)
        endpoint = self.config.cosmos_endpoint
        client = CosmosClient(endpoint, credential=self._credential)  # type: ignore[arg-type]
        self._client = client

        try:
            container = await self._open_container(client)
        except BaseException:
            # A failed attempt must not leave its client and credential open
            await self.close()
            raise

        self._container = container
        self._initialized = True
        logger.info(
            f"Connected to Cosmos DB: {self.config.cosmos_endpoint} "
            f"(database={self.config.cosmos_database}, "
            f"container={self.config.cosmos_container}, "
            f"auth={self.config.cosmos_auth_method.value})"
        )
        return container

    async def _open_container(self, client: CosmosClient) -> ContainerProxy:
        try:
            if self.config.cosmos_create_if_missing:
                database = await client.create_database_if_not_exists(
                    id=self.config.cosmos_database
                )
                container = await database.create_container_if_not_exists(
                    id=self.config.cosmos_container,
                    partition_key=PartitionKey(path=self.config.cosmos_partition_key_path),
                )
            else:
                database = client.get_database_client(self.config.cosmos_database)
                container = database.get_container_client(self.config.cosmos_container)
                # Probe: fails with 404 if the database or container is missing
                await container.read()
        except CosmosResourceNotFoundError as e:
            raise SchemaMissingError(
                f"Cosmos container {self.config.cosmos_database}/"
                f"{self.config.cosmos_container} does not exist"
            ) from e
        except CosmosHttpResponseError as e:
            _raise_http_error(e, "connect")
        return container

    def _to_document(self, record: dict[str, Any]) -> dict[str, Any]:
        doc = {key: record.get(key) for key in _RECORD_FIELDS}
        doc["partitionKey"] = self.user_id
        doc["user_id"] = self.user_id
        doc["type"] = DOC_TYPE_DIAGRAM
        return doc

    @staticmethod
    def _to_record(doc: dict[str, Any]) -> dict[str, Any]:
        return {key: doc.get(key) for key in _RECORD_FIELDS}

    async def get(self, diagram_id: str) -> dict[str, Any] | None:
        container = await self._ensure_initialized()
        try:
            doc = await container.read_item(item=diagram_id, partition_key=self.user_id)
        except CosmosResourceNotFoundError:
            return None
        except CosmosHttpResponseError as e:
            _raise_http_error(e, "get")
        return self._to_record(doc)

    async def list(self) -> list[dict[str, Any]]:
        container = await self._ensure_initialized()
        query = """
            SELECT * FROM c
            WHERE c.type = @type AND c.user_id = @user_id
            ORDER BY c.updated_at DESC
        """
        params: list[dict[str, Any]] = [
            {"name": "@type", "value": DOC_TYPE_DIAGRAM},
            {"name": "@user_id", "value": self.user_id},
        ]

        records: list[dict[str, Any]] = []
        try:
            async for doc in container.query_items(
                query=query,
                parameters=params,
                partition_key=self.user_id,
            ):
                records.append(self._to_record(doc))
        except CosmosResourceNotFoundError as e:
            raise SchemaMissingError(f"Cosmos container vanished during list: {e}") from e
        except CosmosHttpResponseError as e:
            _raise_http_error(e, "list")
        return records

    async def save(self, record: dict[str, Any]) -> dict[str, Any]:
        container = await self._ensure_initialized()
        try:
            doc = await container.create_item(body=self._to_document(record))
        except CosmosHttpResponseError as e:
            _raise_http_error(e, "save")
        return self._to_record(doc)

    async def update(self, diagram_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        """Partial update applied server side.

        Only the given fields are written, so concurrent updates of
        different fields (an autosave and a rename) both survive.
        """
        container = await self._ensure_initialized()
        fields = {**clean_updates(updates), "updated_at": utc_now().isoformat()}
        operations = [
            {"op": "set", "path": f"/{key}", "value": value} for key, value in fields.items()
        ]
        try:
            doc = await container.patch_item(
                item=diagram_id,
                partition_key=self.user_id,
                patch_operations=operations,
            )
        except CosmosResourceNotFoundError:
            return None
        except CosmosHttpResponseError as e:
            _raise_http_error(e, "update")
        return self._to_record(doc)

    async def delete(self, diagram_id: str) -> bool:
        container = await self._ensure_initialized()
        try:
            await container.delete_item(item=diagram_id, partition_key=self.user_id)
        except CosmosResourceNotFoundError:
            return False
        except CosmosHttpResponseError as e:
            _raise_http_error(e, "delete")
        return True

    async def close(self) -> None:
        """Close the Cosmos client and credential."""
        if self._client:
            await self._client.close()
            self._client = None
            self._container = None
            self._initialized = False

        # AAD credentials have a close method
        if self._credential and hasattr(self._credential, "close"):
            await self._credential.close()
        self._credential = None
