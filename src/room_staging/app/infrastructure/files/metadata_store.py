from __future__ import annotations

import asyncio
from typing import Optional

from room_staging.app.domain.files.entities import StoredFileRecord
from room_staging.app.domain.files.value_objects import FileId, UserId


class InMemoryFileMetadataRepository:
    """Process-local record of uploads; the relational store replaces this in production."""

    def __init__(self) -> None:
        self._records: dict[FileId, StoredFileRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: StoredFileRecord) -> None:
        async with self._lock:
            self._records[record.metadata.id] = record

    async def get(self, file_id: FileId, user_id: UserId) -> Optional[StoredFileRecord]:
        record = self._records.get(file_id)
        if record is None or record.metadata.user_id != user_id:
            return None
        return record

    async def delete(self, file_id: FileId, user_id: UserId) -> bool:
        async with self._lock:
            record = self._records.get(file_id)
            if record is None or record.metadata.user_id != user_id:
                return False
            del self._records[file_id]
            return True
