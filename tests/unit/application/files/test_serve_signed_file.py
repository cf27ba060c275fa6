from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from room_staging.app.application.files.dto import ServeFileInputDTO
from room_staging.app.application.files.use_cases import ServeSignedFileUseCase
from room_staging.app.domain.common import Err, Ok
from room_staging.app.domain.files.errors import FileServiceErrorCode
from room_staging.app.domain.files.value_objects import SourceImageId, UserId

pytestmark = pytest.mark.asyncio

PATH = "alice/sources/room-1.jpg"


def _signed_request(signer, path=PATH, user="alice", ttl=timedelta(hours=1)) -> ServeFileInputDTO:
    expires = signer.expires_at(ttl)
    return ServeFileInputDTO(
        file_path=path,
        user_id=user,
        expires=str(expires),
        signature=signer.signature(path, user, expires),
    )


@pytest_asyncio.fixture
async def stored(storage):
    await storage.store_source_image(UserId("alice"), SourceImageId("room-1"), b"\xff\xd8jpeg-bytes", ".jpg")
    return storage


async def test_serves_file_with_headers(signer, stored):
    result = await ServeSignedFileUseCase(signer, stored).execute(_signed_request(signer))

    assert isinstance(result, Ok)
    served = result.value
    assert served.content == b"\xff\xd8jpeg-bytes"
    assert served.content_type == "image/jpeg"

    mtime_ms = int(served.modified_at.timestamp() * 1000)
    headers = served.headers
    assert headers["Content-Type"] == "image/jpeg"
    assert headers["Content-Length"] == str(len(b"\xff\xd8jpeg-bytes"))
    assert headers["Cache-Control"] == "private, max-age=86400, immutable"
    assert headers["ETag"] == f'"{mtime_ms}-{served.size}"'
    assert headers["Last-Modified"].endswith("GMT")
    assert headers["X-Content-Type-Options"] == "nosniff"
    assert headers["X-Frame-Options"] == "DENY"


async def test_expired_url_is_denied(signer, stored, clock):
    request = _signed_request(signer, ttl=timedelta(seconds=30))
    clock.advance(31_000)

    result = await ServeSignedFileUseCase(signer, stored).execute(request)

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.ACCESS_DENIED


async def test_missing_signature_is_unauthorized(signer, stored):
    request = ServeFileInputDTO(file_path=PATH, user_id="alice", expires=None, signature=None)

    result = await ServeSignedFileUseCase(signer, stored).execute(request)

    assert result.error.code is FileServiceErrorCode.UNAUTHORIZED


async def test_traversal_is_denied_even_with_valid_signature(signer, stored, upload_root):
    secret = upload_root.parent / "secret.txt"
    secret.write_text("top secret")

    request = _signed_request(signer, path="alice/../../secret.txt")
    result = await ServeSignedFileUseCase(signer, stored).execute(request)

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.ACCESS_DENIED


async def test_signed_but_missing_file_is_not_found(signer, stored):
    request = _signed_request(signer, path="alice/sources/nope.jpg")

    result = await ServeSignedFileUseCase(signer, stored).execute(request)

    assert result.error.code is FileServiceErrorCode.FILE_NOT_FOUND


async def test_unreadable_file_is_denied(signer, stored, monkeypatch):
    def unreadable(self):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(Path, "read_bytes", unreadable)
    result = await ServeSignedFileUseCase(signer, stored).execute(_signed_request(signer))

    assert isinstance(result, Err)
    assert result.error.code is FileServiceErrorCode.ACCESS_DENIED
