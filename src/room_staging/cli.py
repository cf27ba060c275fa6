"""Operator maintenance commands for the upload store."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional, Sequence

from room_staging.app.application.files.dto import LegacyMigrationItem
from room_staging.app.core.config import get_settings
from room_staging.app.core.deps import (
    get_migrate_legacy_sources_use_case,
    get_storage_manager,
    require_url_signer,
)
from room_staging.app.domain.files.errors import FileServiceConfigurationError
from room_staging.app.domain.files.value_objects import SourceImageId, UserId

logger = logging.getLogger("room_staging.cli")


def _read_lines(path: Path) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


def _migration_items(args: argparse.Namespace) -> list[LegacyMigrationItem]:
    raw = list(args.paths)
    if args.from_file:
        raw.extend(_read_lines(args.from_file))

    items = []
    for entry in raw:
        # "legacy/path.jpg" or "legacy/path.jpg,source-image-id"
        legacy_path, _, source_id = entry.partition(",")
        items.append(LegacyMigrationItem(
            legacy_path=legacy_path.strip(),
            source_image_id=SourceImageId(source_id.strip()) if source_id.strip() else None,
        ))
    return items


async def _migrate_legacy(args: argparse.Namespace) -> int:
    items = _migration_items(args)
    if not items:
        logger.error("Nothing to migrate: pass legacy paths or --from-file")
        return 2
    report = await get_migrate_legacy_sources_use_case().execute(items)
    print(json.dumps({
        "migrated": [
            {"legacy_path": m.legacy_path, "new_path": m.new_path, "source_image_id": m.source_image_id}
            for m in report.migrated
        ],
        "failed": [{"legacy_path": f.legacy_path, "reason": f.reason} for f in report.failed],
    }, indent=2))
    return 1 if report.failed else 0


async def _cleanup(args: argparse.Namespace) -> int:
    storage = get_storage_manager()
    for user_id in args.user_ids:
        await storage.cleanup_empty_directories(UserId(user_id))
    return 0


async def _stats(args: argparse.Namespace) -> int:
    stats = await get_storage_manager().storage_stats()
    print(json.dumps(stats.to_dict(), indent=2, sort_keys=True))
    return 0


async def _purge_orphans(args: argparse.Namespace) -> int:
    active = _read_lines(args.active_file)
    removed = await get_storage_manager().purge_orphaned_files(active, dry_run=args.dry_run)
    for path in removed:
        print(path)
    return 0


async def _sign_url(args: argparse.Namespace) -> int:
    signer = require_url_signer()
    ttl = timedelta(seconds=args.ttl or get_settings().FILE_URL_TTL_SECONDS)
    print(signer.sign_url(args.path, args.user, signer.expires_at(ttl)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="room-staging", description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    migrate = sub.add_parser("migrate-legacy", help="Move flat legacy uploads into the sources/ hierarchy")
    migrate.add_argument("paths", nargs="*", help="Legacy relative paths, optionally 'path,source_image_id'")
    migrate.add_argument("--from-file", type=Path, help="File with one legacy path per line")
    migrate.set_defaults(handler=_migrate_legacy)

    cleanup = sub.add_parser("cleanup", help="Remove empty directories left under user trees")
    cleanup.add_argument("user_ids", nargs="+")
    cleanup.set_defaults(handler=_cleanup)

    stats = sub.add_parser("stats", help="Print file counts and sizes per extension")
    stats.set_defaults(handler=_stats)

    purge = sub.add_parser("purge-orphans", help="Delete stored files no longer referenced")
    purge.add_argument("--active-file", type=Path, required=True,
                       help="File listing every referenced relative path, one per line")
    purge.add_argument("--dry-run", action="store_true", help="Only list what would be removed")
    purge.set_defaults(handler=_purge_orphans)

    sign = sub.add_parser("sign-url", help="Print a signed URL for a stored file")
    sign.add_argument("path", help="Relative path under the upload root")
    sign.add_argument("--user", required=True)
    sign.add_argument("--ttl", type=int, help="Lifetime in seconds (default FILE_URL_TTL_SECONDS)")
    sign.set_defaults(handler=_sign_url)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        return asyncio.run(args.handler(args))
    except FileServiceConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except OSError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
