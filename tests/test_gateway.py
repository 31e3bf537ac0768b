"""Tests for the persistence gateway and its one-way downgrade."""

from __future__ import annotations

import logging

import pytest
from conftest import RecordingStorage, no_sleep

from process_sheets.exceptions import ErrorClass, PersistenceError
from process_sheets.models import DiagramInput
from process_sheets.storage import (
    AccessDeniedError,
    LocalDiagramStorage,
    PersistenceGateway,
    RetryConfig,
    SchemaMissingError,
    StorageConfig,
)


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class TestPrimaryPath:
    """Calls served by a healthy primary store."""

    async def test_save_and_get(
        self, gateway: PersistenceGateway, primary: RecordingStorage
    ) -> None:
        saved = await gateway.save(DiagramInput(name="Sheet 1"))
        loaded = await gateway.get(saved.id)

        assert loaded == saved
        assert saved.id in primary.records
        assert gateway.active_backend is primary

    async def test_update_returns_diagram(self, gateway: PersistenceGateway) -> None:
        saved = await gateway.save(DiagramInput(name="Sheet 1"))

        updated = await gateway.update(saved.id, name="Intake Flow")

        assert updated is not None
        assert updated.name == "Intake Flow"
        assert updated.updated_at >= saved.updated_at

    async def test_update_missing_returns_none(self, gateway: PersistenceGateway) -> None:
        assert await gateway.update("missing", name="x") is None

    async def test_delete(self, gateway: PersistenceGateway) -> None:
        saved = await gateway.save(DiagramInput(name="Sheet 1"))

        assert await gateway.delete(saved.id) is True
        assert await gateway.delete(saved.id) is False

    async def test_list(self, gateway: PersistenceGateway) -> None:
        await gateway.save(DiagramInput(name="Sheet 1"))
        await gateway.save(DiagramInput(name="Sheet 2"))

        names = {d.name for d in await gateway.list()}

        assert names == {"Sheet 1", "Sheet 2"}


class TestCircuitBreaker:
    """Fatal-class failures downgrade to local storage for good."""

    @pytest.mark.parametrize(
        ("error", "reason"),
        [
            (SchemaMissingError("no container"), ErrorClass.FATAL_SCHEMA),
            (AccessDeniedError("rbac"), ErrorClass.FATAL_AUTH),
        ],
    )
    async def test_fatal_error_completes_on_fallback(
        self,
        gateway: PersistenceGateway,
        primary: RecordingStorage,
        fallback: LocalDiagramStorage,
        error: Exception,
        reason: ErrorClass,
    ) -> None:
        """The call that trips the breaker is itself served by the fallback."""
        primary.fail_always = error

        saved = await gateway.save(DiagramInput(name="Sheet 1"))

        assert gateway.downgraded
        assert gateway.downgrade_reason == reason
        assert gateway.active_backend is fallback
        assert await fallback.get(saved.id) is not None

    async def test_breaker_is_sticky(
        self, gateway: PersistenceGateway, primary: RecordingStorage
    ) -> None:
        """After one fatal error the primary is never called again."""
        primary.fail_next["list"] = [SchemaMissingError("no container")]

        await gateway.list()
        assert primary.total_calls == 1

        saved = await gateway.save(DiagramInput(name="Sheet 1"))
        await gateway.get(saved.id)
        await gateway.update(saved.id, name="Intake Flow")
        await gateway.list()
        await gateway.delete(saved.id)

        assert primary.total_calls == 1

    async def test_trip_logs_one_warning(
        self,
        gateway: PersistenceGateway,
        primary: RecordingStorage,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        primary.fail_always = AccessDeniedError("rbac")

        with caplog.at_level(logging.WARNING, logger="process_sheets.storage.gateway"):
            await gateway.list()
            await gateway.list()

        warnings = [r for r in caplog.records if "using local storage" in r.getMessage()]
        assert len(warnings) == 1

    async def test_stats(self, gateway: PersistenceGateway, primary: RecordingStorage) -> None:
        assert gateway.stats()["backend"] == "recording"

        primary.fail_always = SchemaMissingError("no container")
        await gateway.list()

        stats = gateway.stats()
        assert stats["backend"] == "local"
        assert stats["downgraded"] is True
        assert stats["reason"] == "fatal_schema"

    async def test_local_only_gateway(self, storage_config: StorageConfig) -> None:
        """No endpoint configured: local storage from the first call."""
        gateway = PersistenceGateway.from_config(storage_config)

        saved = await gateway.save(DiagramInput(name="Sheet 1"))

        assert gateway.downgraded
        assert gateway.active_backend.name == "local"
        assert (await gateway.get(saved.id)) == saved


class TestTransientFailures:
    """Transient failures are retried and never trip the breaker."""

    async def test_retry_then_success(
        self, gateway: PersistenceGateway, primary: RecordingStorage
    ) -> None:
        primary.fail_next["save"] = [_StatusError(503)]

        saved = await gateway.save(DiagramInput(name="Sheet 1"))

        assert primary.calls["save"] == 2
        assert saved.id in primary.records
        assert not gateway.downgraded

    async def test_exhausted_retries_raise_persistence_error(
        self, primary: RecordingStorage, fallback: LocalDiagramStorage
    ) -> None:
        gateway = PersistenceGateway(
            primary, fallback, retry_config=RetryConfig(max_retries=2), sleep=no_sleep
        )
        primary.fail_always = _StatusError(429)

        with pytest.raises(PersistenceError) as exc_info:
            await gateway.update("d-1", name="x")

        assert exc_info.value.transient
        assert exc_info.value.diagram_id == "d-1"
        assert primary.calls["update"] == 3
        assert not gateway.downgraded

    async def test_permanent_error_is_not_retried(
        self, gateway: PersistenceGateway, primary: RecordingStorage
    ) -> None:
        primary.fail_next["delete"] = [_StatusError(400)]

        with pytest.raises(PersistenceError) as exc_info:
            await gateway.delete("d-1")

        assert exc_info.value.error_class == ErrorClass.PERMANENT
        assert primary.calls["delete"] == 1
        assert not gateway.downgraded

    async def test_fallback_failure_is_persistence_error(
        self, fallback: LocalDiagramStorage
    ) -> None:
        gateway = PersistenceGateway(None, fallback)
        fallback.data_file.parent.mkdir(parents=True)
        fallback.data_file.write_text("{not json")

        with pytest.raises(PersistenceError):
            await gateway.list()
