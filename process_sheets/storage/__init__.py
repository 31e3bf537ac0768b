"""
Diagram storage backends.

Provides the Cosmos DB primary store, the local file fallback store and
the persistence gateway that downgrades from one to the other.

Authentication Methods:
    For Cosmos DB, multiple authentication methods are supported:
    - KEY: Account key (development only)
    - DEFAULT_CREDENTIAL: Azure DefaultAzureCredential (recommended)
    - MANAGED_IDENTITY: Azure Managed Identity
    - SERVICE_PRINCIPAL: Service Principal with client secret

Example:
    >>> from process_sheets.storage import PersistenceGateway, StorageConfig
    >>> config = StorageConfig.from_environment(user_id="user-123")
    >>> gateway = PersistenceGateway.from_config(config)
"""

from .base import (
    AccessDeniedError,
    AuthenticationError,
    CosmosAuthMethod,
    DiagramStorage,
    SchemaMissingError,
    StorageConfig,
    StorageError,
    StorageIOError,
)
from .cosmos import CosmosDiagramStorage
from .gateway import PersistenceGateway
from .local import LocalDiagramStorage
from .resilience import RetryConfig, classify_error, retry_with_backoff

__all__ = [
    # Configuration
    "StorageConfig",
    "CosmosAuthMethod",
    "RetryConfig",
    # Storage implementations
    "DiagramStorage",
    "LocalDiagramStorage",
    "CosmosDiagramStorage",
    "PersistenceGateway",
    # Resilience
    "classify_error",
    "retry_with_backoff",
    # Exceptions
    "StorageError",
    "SchemaMissingError",
    "AccessDeniedError",
    "AuthenticationError",
    "StorageIOError",
]
