from __future__ import annotations

import logging
from collections.abc import Iterable

from room_staging.app.application.files.dto import (
    FailedMigration,
    LegacyMigrationItem,
    MigratedFile,
    MigrationReport,
)
from room_staging.app.domain.files.interfaces import LegacySourceMigrator
from room_staging.app.domain.files.value_objects import new_source_image_id

logger = logging.getLogger(__name__)


class MigrateLegacySourcesUseCase:
    """Moves flat `{user}/{file}{ext}` uploads into the sources/ hierarchy. Operator-triggered only."""

    def __init__(self, migrator: LegacySourceMigrator) -> None:
        self._migrator = migrator

    async def execute(self, items: Iterable[LegacyMigrationItem]) -> MigrationReport:
        migrated: list[MigratedFile] = []
        failed: list[FailedMigration] = []

        for item in items:
            source_image_id = item.source_image_id or new_source_image_id()
            outcome = await self._migrator.migrate_legacy_source_image(item.legacy_path, source_image_id)
            if outcome.success and outcome.new_path:
                migrated.append(MigratedFile(
                    legacy_path=item.legacy_path,
                    new_path=outcome.new_path,
                    source_image_id=source_image_id,
                ))
            else:
                failed.append(FailedMigration(
                    legacy_path=item.legacy_path,
                    reason=outcome.reason or "unknown error",
                ))

        logger.info("Legacy migration finished: %d migrated, %d failed", len(migrated), len(failed))
        return MigrationReport(migrated=tuple(migrated), failed=tuple(failed))
