"""
Abstract diagram storage interface.

Defines the contract that the primary and fallback stores implement,
plus the configuration shared by both.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CosmosAuthMethod(Enum):
    """Authentication method for Cosmos DB.

    KEY: Use account key (development only)
    DEFAULT_CREDENTIAL: Use Azure DefaultAzureCredential (recommended)
    MANAGED_IDENTITY: Use Azure Managed Identity explicitly
    SERVICE_PRINCIPAL: Use Service Principal with client_id/client_secret
    """

    KEY = "key"
    DEFAULT_CREDENTIAL = "default_credential"
    MANAGED_IDENTITY = "managed_identity"
    SERVICE_PRINCIPAL = "service_principal"


@dataclass
class StorageConfig:
    """Configuration for diagram storage.

    Environment Variables:
        PROCESS_SHEETS_COSMOS_ENDPOINT: Cosmos DB endpoint URL
        PROCESS_SHEETS_COSMOS_KEY: Cosmos DB key (if using key auth)
        PROCESS_SHEETS_COSMOS_AUTH_METHOD: Auth method (default: default_credential)
        PROCESS_SHEETS_COSMOS_DATABASE: Database name (default: process-sheets)
        PROCESS_SHEETS_COSMOS_CONTAINER: Container name (default: process_diagrams)
        PROCESS_SHEETS_LOCAL_PATH: Fallback store directory (default: ~/.process_sheets)
        AZURE_TENANT_ID: Azure tenant ID (for service principal)
        AZURE_CLIENT_ID: Azure client ID (for service principal/managed identity)
        AZURE_CLIENT_SECRET: Azure client secret (for service principal)

    Attributes:
        user_id: The authenticated principal owning the diagrams
        cosmos_endpoint: Cosmos DB endpoint URL; None means local-only
        cosmos_create_if_missing: Create database/container instead of
            reporting a missing schema
        local_path: Directory of the local fallback store
    """

    user_id: str

    cosmos_endpoint: str | None = None
    cosmos_auth_method: CosmosAuthMethod = CosmosAuthMethod.DEFAULT_CREDENTIAL
    cosmos_key: str | None = None
    cosmos_database: str = "process-sheets"
    cosmos_container: str = "process_diagrams"
    cosmos_partition_key_path: str = "/partitionKey"
    cosmos_create_if_missing: bool = False

    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None

    local_path: str | None = None

    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, user_id: str) -> StorageConfig:
        """Create configuration from environment variables."""
        auth_method_str = os.environ.get("PROCESS_SHEETS_COSMOS_AUTH_METHOD", "default_credential")
        try:
            auth_method = CosmosAuthMethod(auth_method_str.lower())
        except ValueError:
            auth_method = CosmosAuthMethod.DEFAULT_CREDENTIAL

        return cls(
            user_id=user_id,
            cosmos_endpoint=os.environ.get("PROCESS_SHEETS_COSMOS_ENDPOINT"),
            cosmos_auth_method=auth_method,
            cosmos_key=os.environ.get("PROCESS_SHEETS_COSMOS_KEY"),
            cosmos_database=os.environ.get("PROCESS_SHEETS_COSMOS_DATABASE", "process-sheets"),
            cosmos_container=os.environ.get("PROCESS_SHEETS_COSMOS_CONTAINER", "process_diagrams"),
            cosmos_create_if_missing=(
                os.environ.get("PROCESS_SHEETS_COSMOS_CREATE_IF_MISSING", "").lower() == "true"
            ),
            azure_tenant_id=os.environ.get("AZURE_TENANT_ID"),
            azure_client_id=os.environ.get("AZURE_CLIENT_ID"),
            azure_client_secret=os.environ.get("AZURE_CLIENT_SECRET"),
            local_path=os.environ.get("PROCESS_SHEETS_LOCAL_PATH"),
        )


class DiagramStorage(ABC):
    """Abstract interface for diagram record storage.

    Records follow the persistence schema:
    {id, name, xml_content, svg_content, thumbnail, created_at, updated_at}
    """

    name: str = "storage"

    @abstractmethod
    async def get(self, diagram_id: str) -> dict[str, Any] | None:
        """Return a record, or None if it does not exist."""
        ...

    @abstractmethod
    async def list(self) -> list[dict[str, Any]]:
        """Return all records, freshest (updated_at) first."""
        ...

    @abstractmethod
    async def save(self, record: dict[str, Any]) -> dict[str, Any]:
        """Persist a new record and return it as stored.

        Raises:
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def update(self, diagram_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        """Apply a partial update, bump updated_at and return the record.

        Returns:
            The updated record, or None if no such record exists
        """
        ...

    @abstractmethod
    async def delete(self, diagram_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the storage connection and cleanup resources."""
        ...


class StorageError(Exception):
    """Base exception for storage backend errors."""

    pass


class SchemaMissingError(StorageError):
    """Raised when the backing table/container for diagrams does not exist."""

    pass


class AccessDeniedError(StorageError):
    """Raised when access to a resource is denied."""

    pass


class AuthenticationError(StorageError):
    """Raised when authentication fails or no principal is available."""

    pass


class StorageIOError(StorageError):
    """Raised when a local file operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message)
        self.operation = operation
        self.path = path
        self.cause = cause
