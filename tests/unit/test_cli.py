import json

import pytest

from room_staging import cli
from room_staging.app.core import deps
from room_staging.app.core.config import get_settings


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path, upload_root):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FILE_UPLOAD_PATH", str(upload_root))
    monkeypatch.setenv("FILE_SIGNING_SECRET", "cli-secret")
    for cached in (get_settings, deps.get_storage_manager, deps.get_url_signer):
        cached.cache_clear()
    yield
    for cached in (get_settings, deps.get_storage_manager, deps.get_url_signer):
        cached.cache_clear()


def test_migrate_legacy(upload_root, capsys):
    (upload_root / "alice").mkdir(parents=True)
    (upload_root / "alice" / "old.jpg").write_bytes(b"x")

    code = cli.main(["migrate-legacy", "alice/old.jpg,room-1", "alice/missing.jpg"])

    out = json.loads(capsys.readouterr().out)
    assert code == 1
    assert out["migrated"] == [
        {"legacy_path": "alice/old.jpg", "new_path": "alice/sources/room-1.jpg", "source_image_id": "room-1"}
    ]
    assert out["failed"][0]["legacy_path"] == "alice/missing.jpg"


def test_migrate_legacy_from_file(upload_root, tmp_path, capsys):
    (upload_root / "alice").mkdir(parents=True)
    (upload_root / "alice" / "a.png").write_bytes(b"x")
    listing = tmp_path / "legacy.txt"
    listing.write_text("# exported from the images table\nalice/a.png\n")

    assert cli.main(["migrate-legacy", "--from-file", str(listing)]) == 0
    assert json.loads(capsys.readouterr().out)["migrated"][0]["legacy_path"] == "alice/a.png"


def test_migrate_legacy_without_input():
    assert cli.main(["migrate-legacy"]) == 2


def test_stats_and_purge(upload_root, tmp_path, capsys):
    (upload_root / "alice" / "sources").mkdir(parents=True)
    (upload_root / "alice" / "sources" / "keep.jpg").write_bytes(b"1234")
    (upload_root / "alice" / "sources" / "orphan.jpg").write_bytes(b"12")

    assert cli.main(["stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_files"] == 2
    assert stats["total_size"] == 6

    active = tmp_path / "active.txt"
    active.write_text("alice/sources/keep.jpg\n")
    assert cli.main(["purge-orphans", "--active-file", str(active)]) == 0
    assert capsys.readouterr().out.split() == ["alice/sources/orphan.jpg"]
    assert not (upload_root / "alice" / "sources" / "orphan.jpg").exists()


def test_purge_with_missing_listing_fails_cleanly(tmp_path):
    assert cli.main(["purge-orphans", "--active-file", str(tmp_path / "nope.txt")]) == 1


def test_cleanup(upload_root):
    (upload_root / "alice" / "sources").mkdir(parents=True)

    assert cli.main(["cleanup", "alice"]) == 0
    assert not (upload_root / "alice").exists()


def test_sign_url(capsys):
    assert cli.main(["sign-url", "alice/sources/room-1.jpg", "--user", "alice", "--ttl", "60"]) == 0

    url = capsys.readouterr().out.strip()
    assert url.startswith("/files/alice/sources/room-1.jpg?userId=alice&expires=")


def test_sign_url_without_secret_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("FILE_SIGNING_SECRET")
    get_settings.cache_clear()
    deps.get_url_signer.cache_clear()

    assert cli.main(["sign-url", "a/sources/b.jpg", "--user", "a"]) == 2


def test_invalid_configuration_exits_with_2(monkeypatch):
    monkeypatch.setenv("IMAGE_JPEG_QUALITY", "500")
    get_settings.cache_clear()

    assert cli.main(["stats"]) == 2
