import errno
import os
import stat
from pathlib import Path

import pytest

from room_staging.app.domain.common import Err, Ok
from room_staging.app.domain.common.enums import SupportedFileType, UploadStage
from room_staging.app.domain.files.entities import StoreGenerationRequest
from room_staging.app.domain.files.errors import FileServiceConfigurationError, FileServiceErrorCode
from room_staging.app.domain.files.value_objects import LocalStorageConfig, SourceImageId, UserId
from room_staging.app.infrastructure.files import storage_manager as storage_module
from room_staging.app.infrastructure.files.storage_manager import HierarchicalStorageManager

pytestmark = pytest.mark.asyncio

USER = UserId("alice")
OTHER_USER = UserId("bob")
SOURCE = SourceImageId("room-1")
SIBLING = SourceImageId("room-2")


def _generation_request(source=SOURCE, index=0, user=USER, data=b"generated") -> StoreGenerationRequest:
    return StoreGenerationRequest(
        user_id=user,
        source_image_id=source,
        variation_index=index,
        image_data=data,
        mime_type=SupportedFileType.PNG,
        job_id="job-1",
    )


async def test_initialize_creates_root(storage, upload_root):
    await storage.initialize()
    assert upload_root.is_dir()


async def test_initialize_respects_create_directories_flag(tmp_path):
    root = tmp_path / "never"
    manager = HierarchicalStorageManager(LocalStorageConfig(upload_path=str(root), create_directories=False))

    await manager.initialize()
    assert not root.exists()


async def test_initialize_failure_is_a_configuration_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_bytes(b"x")
    manager = HierarchicalStorageManager(LocalStorageConfig(upload_path=str(blocker / "uploads")))

    with pytest.raises(FileServiceConfigurationError):
        await manager.initialize()


async def test_store_source_image_writes_bytes_at_hierarchical_path(storage, upload_root):
    result = await storage.store_source_image(USER, SOURCE, b"abc", ".jpg")

    assert result == Ok("alice/sources/room-1.jpg")
    assert (upload_root / "alice" / "sources" / "room-1.jpg").read_bytes() == b"abc"
    assert await storage.source_image_exists(USER, SOURCE, ".jpg")
    assert not await storage.source_image_exists(USER, SOURCE, ".png")
    # no temp files left behind
    assert os.listdir(upload_root / "alice" / "sources") == ["room-1.jpg"]


async def test_store_generation_returns_all_path_flavours(storage, upload_root):
    result = await storage.store_generation(_generation_request(index=2))

    assert isinstance(result, Ok)
    stored = result.value
    assert stored.variation_index == 2
    assert stored.relative_path == f"alice/generations/room-1/variation-2-{stored.generation_id}.png"
    assert stored.public_url == f"/uploads/{stored.relative_path}"
    assert stored.file_path == upload_root / stored.relative_path
    assert stored.file_path.read_bytes() == b"generated"
    assert await storage.generation_exists(USER, SOURCE, 2, stored.generation_id, ".png")


async def test_stored_files_follow_the_process_umask(storage):
    umask = os.umask(0)
    os.umask(umask)

    source = await storage.store_source_image(USER, SOURCE, b"x", ".jpg")
    generation = await storage.store_generation(_generation_request())

    for path in (storage.root / source.value, generation.value.file_path):
        assert stat.S_IMODE(path.stat().st_mode) == 0o666 & ~umask

async def test_each_generation_gets_a_fresh_id(storage):
    first = await storage.store_generation(_generation_request())
    second = await storage.store_generation(_generation_request())

    assert first.value.generation_id != second.value.generation_id


async def test_write_failure_maps_to_upload_failed(storage, monkeypatch):
    def broken(target, data):
        raise PermissionError(errno.EACCES, "denied")

    monkeypatch.setattr(storage_module, "_write_atomic", broken)
    result = await storage.store_source_image(USER, SOURCE, b"abc", ".jpg")

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.UPLOAD_FAILED
    assert result.error.upload_details.stage is UploadStage.STORAGE


async def test_disk_full_maps_to_storage_full(storage, monkeypatch):
    def full(target, data):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(storage_module, "_write_atomic", full)
    result = await storage.store_generation(_generation_request())

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.STORAGE_FULL


async def test_failed_write_leaves_nothing_at_target(tmp_path, monkeypatch):
    target = tmp_path / "d" / "file.jpg"

    def explode(src, dst):
        raise OSError(errno.EIO, "I/O error")

    monkeypatch.setattr(storage_module.os, "replace", explode)
    with pytest.raises(OSError):
        storage_module._write_atomic(target, b"data")

    assert not target.exists()
    assert os.listdir(target.parent) == []


async def test_write_recreates_directory_removed_by_cleanup(tmp_path, monkeypatch):
    target = tmp_path / "d" / "file.jpg"
    real_mkstemp = storage_module.tempfile.mkstemp
    calls = []

    def racing_mkstemp(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            os.rmdir(kwargs["dir"])  # cleanup wins the race once
            raise FileNotFoundError(errno.ENOENT, "gone")
        return real_mkstemp(**kwargs)

    monkeypatch.setattr(storage_module.tempfile, "mkstemp", racing_mkstemp)
    storage_module._write_atomic(target, b"data")

    assert len(calls) == 2
    assert target.read_bytes() == b"data"


async def test_cascade_delete_removes_source_and_all_generations(storage, upload_root):
    await storage.store_source_image(USER, SOURCE, b"src", ".jpg")
    for i in range(3):
        await storage.store_generation(_generation_request(index=i))

    await storage.store_source_image(USER, SIBLING, b"sibling", ".jpg")
    sibling_gen = (await storage.store_generation(_generation_request(source=SIBLING))).value

    result = await storage.delete_source_image(USER, SOURCE, ".jpg")

    assert result == Ok(None)
    assert not (upload_root / "alice" / "sources" / "room-1.jpg").exists()
    assert not (upload_root / "alice" / "generations" / "room-1").exists()
    assert (upload_root / "alice" / "sources" / "room-2.jpg").read_bytes() == b"sibling"
    assert sibling_gen.file_path.exists()


async def test_deleting_last_artifacts_prunes_empty_directories(storage, upload_root):
    await storage.store_source_image(USER, SOURCE, b"src", ".jpg")
    await storage.store_generation(_generation_request())
    await storage.store_source_image(OTHER_USER, SOURCE, b"other", ".jpg")

    await storage.delete_source_image(USER, SOURCE, ".jpg")

    assert not (upload_root / "alice").exists()
    assert (upload_root / "bob" / "sources" / "room-1.jpg").exists()


async def test_delete_missing_source_is_not_found(storage):
    result = await storage.delete_source_image(USER, SOURCE, ".jpg")

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.FILE_NOT_FOUND
    assert result.error.access_details.resource == "alice/sources/room-1.jpg"


async def test_delete_single_generation_keeps_source_and_siblings(storage, upload_root):
    await storage.store_source_image(USER, SOURCE, b"src", ".jpg")
    keep = (await storage.store_generation(_generation_request(index=0))).value
    drop = (await storage.store_generation(_generation_request(index=1))).value

    result = await storage.delete_generation(USER, SOURCE, 1, drop.generation_id, ".png")

    assert result == Ok(None)
    assert not drop.file_path.exists()
    assert keep.file_path.exists()
    assert (upload_root / "alice" / "sources" / "room-1.jpg").exists()


async def test_delete_last_generation_prunes_its_directory(storage, upload_root):
    await storage.store_source_image(USER, SOURCE, b"src", ".jpg")
    gen = (await storage.store_generation(_generation_request())).value

    await storage.delete_generation(USER, SOURCE, 0, gen.generation_id, ".png")

    assert not (upload_root / "alice" / "generations").exists()
    assert (upload_root / "alice" / "sources").is_dir()


async def test_delete_missing_generation_is_not_found(storage):
    result = await storage.delete_generation(USER, SOURCE, 0, "nope", ".png")

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.FILE_NOT_FOUND


async def test_cleanup_never_raises(storage, monkeypatch):
    def boom(top):
        raise PermissionError(errno.EACCES, "denied")

    monkeypatch.setattr(storage_module, "_remove_empty_dirs", boom)
    await storage.cleanup_empty_directories(USER)


async def test_cleanup_on_missing_user_is_a_noop(storage):
    await storage.cleanup_empty_directories(UserId("ghost"))


async def test_resolve_secure_path(storage, upload_root):
    await storage.initialize()

    assert storage.resolve_secure_path("alice/sources/a.jpg") == (upload_root / "alice/sources/a.jpg").resolve()
    assert storage.resolve_secure_path("../outside.jpg") is None
    assert storage.resolve_secure_path("alice/../../outside.jpg") is None
    assert storage.resolve_secure_path("/etc/passwd") is None
    assert storage.resolve_secure_path("") is None
    assert storage.resolve_secure_path(".") is None


async def test_read_file(storage):
    await storage.store_source_image(USER, SOURCE, b"bytes", ".jpg")

    result = await storage.read_file("alice/sources/room-1.jpg")
    assert isinstance(result, Ok)
    assert result.value.content == b"bytes"
    assert result.value.size == 5

    missing = await storage.read_file("alice/sources/none.jpg")
    assert missing.error.code is FileServiceErrorCode.FILE_NOT_FOUND

    escaped = await storage.read_file("../../etc/passwd")
    assert escaped.error.code is FileServiceErrorCode.ACCESS_DENIED


@pytest.mark.parametrize("error, code", [
    (PermissionError(errno.EACCES, "Permission denied"), FileServiceErrorCode.ACCESS_DENIED),
    (OSError(errno.EIO, "I/O error"), FileServiceErrorCode.ACCESS_DENIED),
])
async def test_unreadable_file_is_an_error_value(storage, monkeypatch, error, code):
    await storage.store_source_image(USER, SOURCE, b"bytes", ".jpg")

    def unreadable(self):
        raise error

    monkeypatch.setattr(Path, "read_bytes", unreadable)
    result = await storage.read_file("alice/sources/room-1.jpg")

    assert isinstance(result, Err)
    assert result.error.code is code
    assert result.error.access_details.resource == "alice/sources/room-1.jpg"

async def test_migrate_legacy_source_image(storage, upload_root):
    legacy = upload_root / "alice" / "old-file.jpg"
    legacy.parent.mkdir(parents=True)
    legacy.write_bytes(b"legacy")

    outcome = await storage.migrate_legacy_source_image("alice/old-file.jpg", SOURCE)

    assert outcome.success
    assert outcome.new_path == "alice/sources/room-1.jpg"
    assert not legacy.exists()
    assert (upload_root / outcome.new_path).read_bytes() == b"legacy"


async def test_migrate_reports_failures_instead_of_raising(storage, upload_root):
    gone = await storage.migrate_legacy_source_image("alice/missing.jpg", SOURCE)
    assert not gone.success
    assert gone.reason == "Legacy file not found"

    malformed = await storage.migrate_legacy_source_image("alice/sources/room-1.jpg", SOURCE)
    assert not malformed.success
    assert malformed.reason == "Invalid legacy path format"

    await storage.store_source_image(USER, SOURCE, b"taken", ".jpg")
    (upload_root / "alice" / "dup.jpg").write_bytes(b"dup")
    clash = await storage.migrate_legacy_source_image("alice/dup.jpg", SOURCE)
    assert not clash.success
    assert (upload_root / "alice" / "dup.jpg").exists()


async def test_storage_stats(storage):
    await storage.store_source_image(USER, SOURCE, b"1234", ".jpg")
    await storage.store_source_image(USER, SIBLING, b"12", ".png")
    await storage.store_generation(_generation_request(data=b"123456"))

    stats = await storage.storage_stats()

    assert stats.total_files == 3
    assert stats.total_size == 12
    assert stats.by_extension == {".jpg": {"count": 1, "size": 4}, ".png": {"count": 2, "size": 8}}


async def test_purge_orphaned_files(storage, upload_root):
    await storage.store_source_image(USER, SOURCE, b"keep", ".jpg")
    await storage.store_source_image(OTHER_USER, SOURCE, b"orphan", ".jpg")

    preview = await storage.purge_orphaned_files(["alice/sources/room-1.jpg"], dry_run=True)
    assert preview == ["bob/sources/room-1.jpg"]
    assert (upload_root / "bob" / "sources" / "room-1.jpg").exists()

    removed = await storage.purge_orphaned_files(["alice/sources/room-1.jpg"])
    assert removed == ["bob/sources/room-1.jpg"]
    assert not (upload_root / "bob").exists()
    assert (upload_root / "alice" / "sources" / "room-1.jpg").exists()
