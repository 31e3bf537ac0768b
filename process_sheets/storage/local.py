"""
Local file-based diagram storage.

The fallback store of the persistence gateway. Keeps every record of
one user in a single JSON document, rewritten atomically on change.

Directory structure:
    {base_path}/
      {user_id}/
        diagrams.json
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..models import clean_updates, sort_freshest_first, utc_now
from .base import DiagramStorage, StorageConfig, StorageIOError


class LocalDiagramStorage(DiagramStorage):
    """Local file-based diagram storage."""

    name = "local"

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.user_id = config.user_id or "anonymous"

        if config.local_path:
            self.base_path = Path(config.local_path)
        else:
            self.base_path = Path.home() / ".process_sheets"

        # Read-modify-write cycles on the single document must not interleave
        self._lock = asyncio.Lock()

    @property
    def data_file(self) -> Path:
        return self.base_path / self.user_id / "diagrams.json"

    async def _read_all(self) -> list[dict[str, Any]]:
        path = self.data_file
        try:
            if not await aiofiles.os.path.exists(path):
                return []
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise StorageIOError("read_diagrams", str(path), e) from e

        if not content.strip():
            return []
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageIOError("parse_diagrams", str(path), e) from e
        return list(data.get("diagrams", []))

    async def _write_all(self, records: list[dict[str, Any]]) -> None:
        path = self.data_file
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(path.parent), e) from e

        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
        try:
            os.close(fd)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps({"diagrams": records}, indent=2))
                await f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            await aiofiles.os.rename(temp_path, path)
        except Exception as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise StorageIOError("write_diagrams", str(path), e) from e

    async def get(self, diagram_id: str) -> dict[str, Any] | None:
        for record in await self._read_all():
            if record.get("id") == diagram_id:
                return record
        return None

    async def list(self) -> list[dict[str, Any]]:
        return sort_freshest_first(await self._read_all())

    async def save(self, record: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            records = await self._read_all()
            records = [r for r in records if r.get("id") != record["id"]]
            records.append(record)
            await self._write_all(records)
        return dict(record)

    async def update(self, diagram_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        async with self._lock:
            records = await self._read_all()
            for index, record in enumerate(records):
                if record.get("id") == diagram_id:
                    break
            else:
                return None

            updated = {**record, **clean_updates(updates), "updated_at": utc_now().isoformat()}
            records[index] = updated
            await self._write_all(records)
        return dict(updated)

    async def delete(self, diagram_id: str) -> bool:
        async with self._lock:
            records = await self._read_all()
            remaining = [r for r in records if r.get("id") != diagram_id]
            if len(remaining) == len(records):
                return False
            await self._write_all(remaining)
        return True

    async def close(self) -> None:
        """No resources to release for local storage."""
        pass
