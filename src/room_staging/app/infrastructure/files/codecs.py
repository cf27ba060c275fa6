from __future__ import annotations

from functools import lru_cache

import pi_heif

from room_staging.app.domain.common.enums import SupportedFileType

# Pillow format name -> MIME type it is allowed to be declared as
MIME_BY_PIL_FORMAT: dict[str, SupportedFileType] = {
    "JPEG": SupportedFileType.JPEG,
    "MPO": SupportedFileType.JPEG,  # multi-picture JPEGs from phone cameras
    "PNG": SupportedFileType.PNG,
    "WEBP": SupportedFileType.WEBP,
    "HEIF": SupportedFileType.HEIC,
    "TIFF": SupportedFileType.TIFF,
    "BMP": SupportedFileType.BMP,
}


@lru_cache
def register_codecs() -> None:
    """Teach Pillow to open HEIC/HEIF. Safe to call more than once."""
    pi_heif.register_heif_opener()


def mime_for_pil_format(pil_format: str | None) -> SupportedFileType | None:
    if not pil_format:
        return None
    return MIME_BY_PIL_FORMAT.get(pil_format.upper())
