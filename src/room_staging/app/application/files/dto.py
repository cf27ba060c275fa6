from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from room_staging.app.domain.files.value_objects import SourceImageId


@dataclass(frozen=True)
class ServeFileInputDTO:
    """Raw request values; any of them may be missing."""
    file_path: Optional[str]
    user_id: Optional[str]
    expires: Optional[str]
    signature: Optional[str]


# ---------- OUTPUT DTOs ----------
@dataclass(frozen=True)
class ServedFileDTO:
    relative_path: str
    content: bytes
    content_type: str
    size: int
    modified_at: datetime
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LegacyMigrationItem:
    legacy_path: str
    source_image_id: Optional[SourceImageId] = None  # minted when absent


@dataclass(frozen=True)
class MigratedFile:
    legacy_path: str
    new_path: str
    source_image_id: SourceImageId


@dataclass(frozen=True)
class FailedMigration:
    legacy_path: str
    reason: str


@dataclass(frozen=True)
class MigrationReport:
    migrated: tuple[MigratedFile, ...] = ()
    failed: tuple[FailedMigration, ...] = ()

    @property
    def total(self) -> int:
        return len(self.migrated) + len(self.failed)
