from __future__ import annotations

from room_staging.app.domain.files.entities import MigrationOutcome
from room_staging.app.domain.files.value_objects import SourceImageId


class FakeLegacyMigrator:
    """
    In-memory stand-in for the storage manager's migration hook.
    Paths listed in `missing` fail as if the legacy file were gone.
    """

    def __init__(self, missing: set[str] | None = None) -> None:
        self.missing = missing or set()
        self.calls: list[tuple[str, SourceImageId]] = []

    async def migrate_legacy_source_image(self, legacy_path: str, source_image_id: SourceImageId) -> MigrationOutcome:
        self.calls.append((legacy_path, source_image_id))
        if legacy_path in self.missing:
            return MigrationOutcome(legacy_path=legacy_path, success=False, reason="Legacy file not found")
        user_id, _, filename = legacy_path.partition("/")
        ext = filename[filename.rfind("."):]
        return MigrationOutcome(
            legacy_path=legacy_path,
            success=True,
            new_path=f"{user_id}/sources/{source_image_id}{ext}",
        )
