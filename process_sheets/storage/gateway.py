"""
Persistence gateway over a primary store with a local fallback.

Every call goes to the primary store (Cosmos DB) until the first
fatal-class failure: a missing schema, denied permission or a missing
principal. From then on the gateway is downgraded for the rest of the
session and every call, including the one that tripped it, completes on
the local fallback store. The primary store is never probed again and the
two stores are never synchronized.

Transient failures are retried with exponential backoff and then
surfaced as PersistenceError without tripping the breaker.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..exceptions import ErrorClass, PersistenceError
from ..models import Diagram, DiagramInput
from .base import DiagramStorage, StorageConfig
from .local import LocalDiagramStorage
from .resilience import RetryConfig, classify_error, retry_with_backoff

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """CRUD over diagram records with a sticky downgrade to local storage.

    The CRUD contract is identical whichever backend serves the call:
    - get(id) -> Diagram | None
    - list() -> list[Diagram], freshest first
    - save(DiagramInput) -> Diagram with assigned id/timestamps
    - update(id, **fields) -> Diagram | None (None: record absent)
    - delete(id) -> bool
    """

    def __init__(
        self,
        primary: DiagramStorage | None,
        fallback: DiagramStorage,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the gateway.

        Args:
            primary: Primary store, or None to run local-only from the start
            fallback: Local store used after the breaker trips
            retry_config: Backoff settings for transient primary failures
            sleep: Awaitable used between retries
        """
        self._primary = primary
        self._fallback = fallback
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

        self._downgraded = primary is None
        self._downgrade_reason: ErrorClass | None = None
        self._downgrade_message: str | None = (
            "no primary store configured" if primary is None else None
        )

    @classmethod
    def from_config(
        cls,
        config: StorageConfig,
        retry_config: RetryConfig | None = None,
    ) -> PersistenceGateway:
        """Build the gateway from storage configuration.

        A config without endpoint or principal yields a local-only gateway.
        """
        fallback = LocalDiagramStorage(config)
        primary: DiagramStorage | None = None
        if config.cosmos_endpoint and config.user_id:
            from .cosmos import CosmosDiagramStorage

            primary = CosmosDiagramStorage(config)
        else:
            logger.info("No Cosmos DB endpoint or user configured - using local storage only")
        return cls(primary, fallback, retry_config=retry_config)

    @property
    def downgraded(self) -> bool:
        return self._downgraded

    @property
    def downgrade_reason(self) -> ErrorClass | None:
        return self._downgrade_reason

    @property
    def active_backend(self) -> DiagramStorage:
        if self._downgraded or self._primary is None:
            return self._fallback
        return self._primary

    def _trip(self, error_class: ErrorClass, exc: Exception) -> None:
        self._downgraded = True
        self._downgrade_reason = error_class
        self._downgrade_message = str(exc)
        logger.warning(
            f"Primary diagram store unavailable ({error_class.value}) - "
            f"using local storage for the rest of this session. Error: {exc}"
        )

    async def _call(self, operation: str, diagram_id: str | None, method: str, *args: Any) -> Any:
        """Run one CRUD call against the active backend.

        Only the primary store goes through retry and classification; a
        fallback failure is reported as-is wrapped in PersistenceError.
        """
        if not self._downgraded and self._primary is not None:
            fn = getattr(self._primary, method)
            context = f"{operation} {diagram_id}" if diagram_id else operation
            try:
                return await retry_with_backoff(
                    fn,
                    *args,
                    config=self.retry_config,
                    context_msg=context,
                    sleep=self._sleep,
                )
            except Exception as e:
                error_class = classify_error(e)
                if not error_class.is_fatal:
                    raise PersistenceError(operation, error_class, e, diagram_id) from e
                self._trip(error_class, e)

        fn = getattr(self._fallback, method)
        try:
            return await fn(*args)
        except Exception as e:
            raise PersistenceError(operation, classify_error(e), e, diagram_id) from e

    async def get(self, diagram_id: str) -> Diagram | None:
        record = await self._call("get", diagram_id, "get", diagram_id)
        return Diagram.from_dict(record) if record else None

    async def list(self) -> list[Diagram]:
        records = await self._call("list", None, "list")
        return [Diagram.from_dict(r) for r in records]

    async def save(self, diagram: DiagramInput) -> Diagram:
        record = diagram.to_record()
        stored = await self._call("save", record["id"], "save", record)
        return Diagram.from_dict(stored)

    async def update(self, diagram_id: str, **fields: Any) -> Diagram | None:
        """Apply a partial update.

        Returns None when the record does not exist in the active backend;
        callers treat that as a logic error, not a retryable condition.
        """
        record = await self._call("update", diagram_id, "update", diagram_id, fields)
        if record is None:
            logger.warning(f"Update for missing diagram {diagram_id} on {self.active_backend.name}")
            return None
        return Diagram.from_dict(record)

    async def delete(self, diagram_id: str) -> bool:
        return bool(await self._call("delete", diagram_id, "delete", diagram_id))

    async def close(self) -> None:
        """Close both stores."""
        await self._fallback.close()
        if self._primary is not None:
            await self._primary.close()

    def stats(self) -> dict[str, Any]:
        return {
            "backend": self.active_backend.name,
            "downgraded": self._downgraded,
            "reason": self._downgrade_reason.value if self._downgrade_reason else None,
            "message": self._downgrade_message,
        }
