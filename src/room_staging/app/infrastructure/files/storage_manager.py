"""
Filesystem side of the hierarchical layout.

All blocking calls run in worker threads; callers only ever see coroutines.
Paths handed in as identifiers are turned into disk locations exclusively
through StoragePathManager.
"""
from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from room_staging.app.domain.common import Err, Ok, Result
from room_staging.app.domain.common.enums import FileOperation, UploadStage
from room_staging.app.domain.files.entities import (
    GenerationStorageResult,
    MigrationOutcome,
    StoredFileContent,
    StoreGenerationRequest,
    StorageStats,
)
from room_staging.app.domain.files.errors import (
    FILE_NOT_FOUND_MESSAGE,
    STORAGE_FULL_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    AccessDetails,
    AccessFailure,
    FileServiceConfigurationError,
    FileServiceErrorCode,
    SystemDetails,
    SystemFailure,
    UploadDetails,
    UploadFailure,
)
from room_staging.app.domain.files.paths import GENERATIONS_DIR, SOURCES_DIR, StoragePathManager
from room_staging.app.domain.files.value_objects import (
    GenerationId,
    LocalStorageConfig,
    SourceImageId,
    UserId,
    extension_for,
    new_generation_id,
)

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".upload-"
TEMP_SUFFIX = ".tmp"

_DISK_FULL_ERRNOS = {errno.ENOSPC, errno.EDQUOT}

# mkstemp creates 0600 files; stored images get the mode a plain open() would give
_UMASK = os.umask(0)
os.umask(_UMASK)
FILE_MODE = 0o666 & ~_UMASK

DeleteResult = Result[None, Union[AccessFailure, SystemFailure]]


def _is_temp_file(name: str) -> bool:
    return name.startswith(TEMP_PREFIX) and name.endswith(TEMP_SUFFIX)


def _write_atomic(target: Path, data: bytes) -> None:
    """
    Write `data` so that `target` is either absent or complete.

    The temp file lives next to the target so os.replace stays on one
    filesystem. If a concurrent cleanup removes the freshly created
    directory we re-create it once.
    """
    for attempt in range(2):
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX)
        except FileNotFoundError:
            if attempt:
                raise
            logger.debug("Directory %s vanished before write, re-creating", target.parent)
            continue
        break

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, FILE_MODE)
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def _remove_empty_dirs(top: Path) -> None:
    """Bottom-up removal of empty directories under (and including) `top`."""
    if not top.is_dir():
        return
    for dirpath, _dirnames, _filenames in os.walk(top, topdown=False):
        try:
            os.rmdir(dirpath)
        except FileNotFoundError:
            pass  # someone else removed it
        except OSError as e:
            if e.errno not in (errno.ENOTEMPTY, errno.EEXIST):
                raise


class HierarchicalStorageManager:
    def __init__(self, config: LocalStorageConfig, paths: Optional[StoragePathManager] = None) -> None:
        self._config = config
        self._paths = paths or StoragePathManager(config.upload_path, config.public_path)
        self._root = self._paths.base_upload_path

    @property
    def paths(self) -> StoragePathManager:
        return self._paths

    @property
    def root(self) -> Path:
        return self._root

    async def initialize(self) -> None:
        if not self._config.create_directories:
            return
        try:
            await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise FileServiceConfigurationError(
                f"Cannot create upload directory {self._root}: {e}"
            ) from e
        logger.info("Storage root ready at %s", self._root)

    # ---------- writes ----------

    async def store_source_image(
        self, user_id: UserId, source_image_id: SourceImageId, data: bytes, extension: str
    ) -> Result[str, UploadFailure]:
        relative_path = self._paths.source_image_relative_path(user_id, source_image_id, extension)
        target = self._paths.source_image_path(user_id, source_image_id, extension)
        try:
            await asyncio.to_thread(_write_atomic, target, data)
        except OSError as e:
            return Err(self._write_failure(e, len(data), user_id=user_id))
        logger.debug("Stored source image %s (%d bytes)", relative_path, len(data))
        return Ok(relative_path)

    async def store_generation(self, request: StoreGenerationRequest) -> Result[GenerationStorageResult, UploadFailure]:
        generation_id = new_generation_id()
        extension = extension_for(request.mime_type)
        args = (request.user_id, request.source_image_id, request.variation_index, generation_id, extension)

        relative_path = self._paths.generation_relative_path(*args)
        target = self._paths.generation_path(*args)
        try:
            await asyncio.to_thread(_write_atomic, target, request.image_data)
        except OSError as e:
            return Err(self._write_failure(e, len(request.image_data), user_id=request.user_id))

        logger.debug("Stored generation %s (job=%s)", relative_path, request.job_id)
        return Ok(GenerationStorageResult(
            generation_id=generation_id,
            relative_path=relative_path,
            public_url=self._paths.public_url(relative_path),
            file_path=target,
            variation_index=request.variation_index,
        ))

    def _write_failure(self, e: OSError, size: int, *, user_id: Optional[str] = None) -> UploadFailure:
        if e.errno in _DISK_FULL_ERRNOS:
            logger.error("Storage full while writing %d bytes: %s", size, e)
            return UploadFailure(
                code=FileServiceErrorCode.STORAGE_FULL,
                message=STORAGE_FULL_MESSAGE,
                user_id=user_id,
                upload_details=UploadDetails(stage=UploadStage.STORAGE, retryable=True, bytes_processed=size),
            )
        logger.error("Write failed: %s", e)
        return UploadFailure(
            code=FileServiceErrorCode.UPLOAD_FAILED,
            message=UPLOAD_FAILED_MESSAGE,
            details={"reason": str(e)},
            user_id=user_id,
            upload_details=UploadDetails(stage=UploadStage.STORAGE, retryable=True, bytes_processed=size),
        )

    # ---------- deletes ----------

    async def delete_source_image(
        self, user_id: UserId, source_image_id: SourceImageId, extension: str
    ) -> DeleteResult:
        source_path = self._paths.source_image_path(user_id, source_image_id, extension)
        generations_dir = self._paths.generations_directory(user_id, source_image_id)
        resource = self._paths.source_image_relative_path(user_id, source_image_id, extension)

        try:
            await asyncio.to_thread(source_path.unlink)
        except FileNotFoundError:
            return Err(self._not_found(resource, user_id, "Source image not found"))
        except OSError as e:
            return Err(self._deletion_failed(resource, user_id, e))

        try:
            await asyncio.to_thread(shutil.rmtree, generations_dir)
        except FileNotFoundError:
            pass  # no generations yet
        except OSError as e:
            logger.warning("Failed to delete generations directory %s: %s", generations_dir, e)

        await self.cleanup_empty_directories(user_id)
        logger.debug("Deleted source image %s with its generations", resource)
        return Ok(None)

    async def delete_generation(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> DeleteResult:
        args = (user_id, source_image_id, variation_index, generation_id, extension)
        path = self._paths.generation_path(*args)
        resource = self._paths.generation_relative_path(*args)

        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return Err(self._not_found(resource, user_id, "Generation not found"))
        except OSError as e:
            return Err(self._deletion_failed(resource, user_id, e))

        await self.cleanup_empty_directories(user_id)
        return Ok(None)

    def _not_found(self, resource: str, user_id: str, message: str) -> AccessFailure:
        return AccessFailure(
            code=FileServiceErrorCode.FILE_NOT_FOUND,
            message=message,
            user_id=user_id,
            access_details=AccessDetails(requested_operation=FileOperation.DELETE, resource=resource),
        )

    def _deletion_failed(self, resource: str, user_id: str, e: OSError) -> SystemFailure:
        logger.error("Failed to delete %s: %s", resource, e)
        return SystemFailure(
            code=FileServiceErrorCode.DELETION_FAILED,
            message=f"Failed to delete {resource}: {e.strerror or e}",
            user_id=user_id,
            system_details=SystemDetails(component="storage", recoverable=True),
        )

    async def cleanup_empty_directories(self, user_id: UserId) -> None:
        """Never fails: an empty directory left behind is cosmetic."""
        user_dir = self._paths.user_directory(user_id)

        def _cleanup() -> None:
            _remove_empty_dirs(user_dir / SOURCES_DIR)
            _remove_empty_dirs(user_dir / GENERATIONS_DIR)
            _remove_empty_dirs(user_dir)

        try:
            await asyncio.to_thread(_cleanup)
        except OSError as e:
            logger.warning("Directory cleanup for user %s failed: %s", user_id, e)

    # ---------- read-only helpers ----------

    async def source_image_exists(self, user_id: UserId, source_image_id: SourceImageId, extension: str) -> bool:
        path = self._paths.source_image_path(user_id, source_image_id, extension)
        return await asyncio.to_thread(path.is_file)

    async def generation_exists(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> bool:
        path = self._paths.generation_path(user_id, source_image_id, variation_index, generation_id, extension)
        return await asyncio.to_thread(path.is_file)

    def source_image_public_url(self, user_id: UserId, source_image_id: SourceImageId, extension: str) -> str:
        return self._paths.source_image_public_url(user_id, source_image_id, extension)

    def generation_public_url(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> str:
        return self._paths.generation_public_url(user_id, source_image_id, variation_index, generation_id, extension)

    def resolve_secure_path(self, relative_path: str) -> Optional[Path]:
        """Absolute path for `relative_path`, or None if it escapes the storage root."""
        if not relative_path or "\x00" in relative_path or os.path.isabs(relative_path):
            return None
        root = self._root.resolve()
        candidate = (root / relative_path).resolve()
        if candidate == root or not candidate.is_relative_to(root):
            return None
        return candidate

    async def read_file(self, relative_path: str) -> Result[StoredFileContent, AccessFailure]:
        path = self.resolve_secure_path(relative_path)
        if path is None:
            logger.warning("Rejected path outside storage root: %r", relative_path)
            return Err(AccessFailure(
                code=FileServiceErrorCode.ACCESS_DENIED,
                message="Invalid file path",
                access_details=AccessDetails(requested_operation=FileOperation.READ, resource=relative_path),
            ))

        def _read() -> StoredFileContent:
            stat = path.stat()
            return StoredFileContent(
                relative_path=relative_path,
                content=path.read_bytes(),
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )

        try:
            return Ok(await asyncio.to_thread(_read))
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            code, message = FileServiceErrorCode.FILE_NOT_FOUND, FILE_NOT_FOUND_MESSAGE
        except PermissionError:
            logger.warning("Permission denied reading %s", relative_path)
            code, message = FileServiceErrorCode.ACCESS_DENIED, "Permission denied"
        except OSError as e:
            logger.error("Failed to read %s: %s", relative_path, e)
            code, message = FileServiceErrorCode.ACCESS_DENIED, "File could not be read"
        return Err(AccessFailure(
            code=code,
            message=message,
            access_details=AccessDetails(requested_operation=FileOperation.READ, resource=relative_path),
        ))

    # ---------- maintenance ----------

    async def migrate_legacy_source_image(self, legacy_path: str, source_image_id: SourceImageId) -> MigrationOutcome:
        """Move `{user}/{file}{ext}` to `{user}/sources/{source}{ext}`. Never raises."""
        parsed = self._paths.parse_legacy_source_path(legacy_path)
        if parsed is None:
            return MigrationOutcome(legacy_path=legacy_path, success=False, reason="Invalid legacy path format")

        try:
            new_relative = self._paths.source_image_relative_path(parsed.user_id, source_image_id, parsed.extension)
        except ValueError as e:
            return MigrationOutcome(legacy_path=legacy_path, success=False, reason=str(e))

        old_path = self._paths.legacy_source_image_path(parsed.user_id, parsed.file_id, parsed.extension)
        new_path = self._paths.source_image_path(parsed.user_id, source_image_id, parsed.extension)

        def _move() -> None:
            if new_path.exists():
                raise FileExistsError(errno.EEXIST, "Target already exists", str(new_path))
            new_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(old_path, new_path)

        try:
            await asyncio.to_thread(_move)
        except FileNotFoundError:
            return MigrationOutcome(legacy_path=legacy_path, success=False, reason="Legacy file not found")
        except OSError as e:
            logger.warning("Migration of %s failed: %s", legacy_path, e)
            return MigrationOutcome(legacy_path=legacy_path, success=False, reason=e.strerror or str(e))

        logger.info("Migrated %s -> %s", legacy_path, new_relative)
        return MigrationOutcome(legacy_path=legacy_path, success=True, new_path=new_relative)

    async def storage_stats(self) -> StorageStats:
        def _collect() -> StorageStats:
            total_files = 0
            total_size = 0
            by_extension: dict[str, dict[str, int]] = {}
            for dirpath, _dirnames, filenames in os.walk(self._root):
                for name in filenames:
                    if _is_temp_file(name):
                        continue
                    try:
                        size = os.stat(os.path.join(dirpath, name)).st_size
                    except FileNotFoundError:
                        continue
                    ext = os.path.splitext(name)[1].lower() or "none"
                    bucket = by_extension.setdefault(ext, {"count": 0, "size": 0})
                    bucket["count"] += 1
                    bucket["size"] += size
                    total_files += 1
                    total_size += size
            return StorageStats(total_files=total_files, total_size=total_size, by_extension=by_extension)

        return await asyncio.to_thread(_collect)

    async def purge_orphaned_files(self, active_paths: Iterable[str], *, dry_run: bool = False) -> list[str]:
        """
        Delete every stored file whose relative path is not in `active_paths`.

        Returns the relative paths that were (or, with dry_run, would be)
        removed. Empty directories left behind are pruned.
        """
        active = {p.strip("/") for p in active_paths}
        root = self._root

        def _purge() -> list[str]:
            removed: list[str] = []
            for dirpath, _dirnames, filenames in os.walk(root):
                for name in filenames:
                    full = Path(dirpath) / name
                    relative = full.relative_to(root).as_posix()
                    # in-flight writes look like orphans
                    if relative in active or _is_temp_file(name):
                        continue
                    if not dry_run:
                        try:
                            full.unlink()
                        except FileNotFoundError:
                            continue
                        except OSError as e:
                            logger.warning("Could not remove orphan %s: %s", relative, e)
                            continue
                    removed.append(relative)
            if not dry_run:
                for child in root.iterdir() if root.is_dir() else ():
                    if child.is_dir():
                        _remove_empty_dirs(child)
            return removed

        removed = await asyncio.to_thread(_purge)
        logger.info("%s %d orphaned file(s)", "Would remove" if dry_run else "Removed", len(removed))
        return removed
