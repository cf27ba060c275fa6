from __future__ import annotations

import logging
from email.utils import format_datetime
from pathlib import PurePosixPath

from room_staging.app.application.files.dto import ServedFileDTO, ServeFileInputDTO
from room_staging.app.domain.common import Err, Ok, Result
from room_staging.app.domain.files.errors import AccessFailure
from room_staging.app.domain.files.interfaces import StoredFileReader, UrlSigner
from room_staging.app.domain.files.value_objects import mime_type_for_extension

logger = logging.getLogger(__name__)

CACHE_CONTROL = "private, max-age=86400, immutable"


def mime_type_for_path(path: str) -> str:
    return mime_type_for_extension(PurePosixPath(path).suffix)


class ServeSignedFileUseCase:
    def __init__(self, signer: UrlSigner, reader: StoredFileReader) -> None:
        self._signer = signer
        self._reader = reader

    async def execute(self, dto: ServeFileInputDTO) -> Result[ServedFileDTO, AccessFailure]:
        verified = self._signer.verify(dto.file_path, dto.user_id, dto.expires, dto.signature)
        if isinstance(verified, Err):
            return verified

        # a valid signature does not make a path safe
        read = await self._reader.read_file(dto.file_path)
        if isinstance(read, Err):
            return read
        stored = read.value

        content_type = mime_type_for_path(stored.relative_path)
        mtime_ms = int(stored.modified_at.timestamp() * 1000)
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(stored.size),
            "Cache-Control": CACHE_CONTROL,
            "ETag": f'"{mtime_ms}-{stored.size}"',
            "Last-Modified": format_datetime(stored.modified_at, usegmt=True),
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
        }
        logger.debug("Serving %s to %s", stored.relative_path, dto.user_id)
        return Ok(ServedFileDTO(
            relative_path=stored.relative_path,
            content=stored.content,
            content_type=content_type,
            size=stored.size,
            modified_at=stored.modified_at,
            headers=headers,
        ))
