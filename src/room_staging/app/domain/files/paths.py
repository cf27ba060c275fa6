"""
Hierarchical storage layout.

    {root}/{user_id}/sources/{source_image_id}{ext}
    {root}/{user_id}/generations/{source_image_id}/variation-{n}-{generation_id}{ext}

Everything in here is pure string/Path arithmetic; nothing touches the disk.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from room_staging.app.domain.files.value_objects import (
    FileId,
    GenerationId,
    SourceImageId,
    UserId,
)

SOURCES_DIR = "sources"
GENERATIONS_DIR = "generations"

_SEGMENT = r"[A-Za-z0-9_-]+"
_EXTENSION = r"\.[A-Za-z0-9]{2,5}"

_SEGMENT_RE = re.compile(_SEGMENT)
_EXTENSION_RE = re.compile(_EXTENSION)
_SOURCE_RE = re.compile(rf"({_SEGMENT})/{SOURCES_DIR}/({_SEGMENT})({_EXTENSION})")
_GENERATION_RE = re.compile(
    rf"({_SEGMENT})/{GENERATIONS_DIR}/({_SEGMENT})/variation-(\d+)-({_SEGMENT})({_EXTENSION})"
)
_LEGACY_RE = re.compile(rf"({_SEGMENT})/({_SEGMENT})({_EXTENSION})")


@dataclass(frozen=True, slots=True)
class SourcePathParts:
    user_id: UserId
    source_image_id: SourceImageId
    extension: str


@dataclass(frozen=True, slots=True)
class GenerationPathParts:
    user_id: UserId
    source_image_id: SourceImageId
    variation_index: int
    generation_id: GenerationId
    extension: str


@dataclass(frozen=True, slots=True)
class LegacyPathParts:
    user_id: UserId
    file_id: FileId
    extension: str


def _segment(value: str, what: str) -> str:
    if not _SEGMENT_RE.fullmatch(value or ""):
        raise ValueError(f"Invalid {what} for a storage path: {value!r}")
    return value


def _extension(value: str) -> str:
    if not _EXTENSION_RE.fullmatch(value or ""):
        raise ValueError(f"Invalid file extension: {value!r}")
    return value


def _variation(index: int) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValueError(f"Invalid variation index: {index!r}")
    return index


def _generation_filename(variation_index: int, generation_id: GenerationId, extension: str) -> str:
    return (
        f"variation-{_variation(variation_index)}-"
        f"{_segment(generation_id, 'generation id')}{_extension(extension)}"
    )


class StoragePathManager:
    def __init__(self, base_upload_path: Path | str, base_public_path: str) -> None:
        self._base_upload_path = Path(base_upload_path)
        self._base_public_path = base_public_path.rstrip("/")

    @property
    def base_upload_path(self) -> Path:
        return self._base_upload_path

    # ---------- directories ----------

    def user_directory(self, user_id: UserId) -> Path:
        return self._base_upload_path / _segment(user_id, "user id")

    def sources_directory(self, user_id: UserId) -> Path:
        return self.user_directory(user_id) / SOURCES_DIR

    def generations_base_directory(self, user_id: UserId) -> Path:
        return self.user_directory(user_id) / GENERATIONS_DIR

    def generations_directory(self, user_id: UserId, source_image_id: SourceImageId) -> Path:
        return self.generations_base_directory(user_id) / _segment(source_image_id, "source image id")

    # ---------- source images ----------

    def source_image_path(self, user_id: UserId, source_image_id: SourceImageId, extension: str) -> Path:
        return self._base_upload_path / self.source_image_relative_path(user_id, source_image_id, extension)

    def source_image_relative_path(
        self, user_id: UserId, source_image_id: SourceImageId, extension: str
    ) -> str:
        return (
            f"{_segment(user_id, 'user id')}/{SOURCES_DIR}/"
            f"{_segment(source_image_id, 'source image id')}{_extension(extension)}"
        )

    def source_image_public_url(self, user_id: UserId, source_image_id: SourceImageId, extension: str) -> str:
        return self.public_url(self.source_image_relative_path(user_id, source_image_id, extension))

    # ---------- generations ----------

    def generation_path(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> Path:
        return self._base_upload_path / self.generation_relative_path(
            user_id, source_image_id, variation_index, generation_id, extension
        )

    def generation_relative_path(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> str:
        filename = _generation_filename(variation_index, generation_id, extension)
        return (
            f"{_segment(user_id, 'user id')}/{GENERATIONS_DIR}/"
            f"{_segment(source_image_id, 'source image id')}/{filename}"
        )

    def generation_public_url(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> str:
        return self.public_url(
            self.generation_relative_path(user_id, source_image_id, variation_index, generation_id, extension)
        )

    def public_url(self, relative_path: str) -> str:
        return f"{self._base_public_path}/{relative_path}"

    # ---------- parsing ----------

    @staticmethod
    def parse_source_path(path: str) -> Optional[SourcePathParts]:
        match = _SOURCE_RE.fullmatch(path)
        if not match:
            return None
        user_id, source_image_id, extension = match.groups()
        return SourcePathParts(
            user_id=UserId(user_id),
            source_image_id=SourceImageId(source_image_id),
            extension=extension,
        )

    @staticmethod
    def parse_generation_path(path: str) -> Optional[GenerationPathParts]:
        match = _GENERATION_RE.fullmatch(path)
        if not match:
            return None
        user_id, source_image_id, index, generation_id, extension = match.groups()
        return GenerationPathParts(
            user_id=UserId(user_id),
            source_image_id=SourceImageId(source_image_id),
            variation_index=int(index),
            generation_id=GenerationId(generation_id),
            extension=extension,
        )

    @classmethod
    def is_valid_hierarchical_path(cls, path: str) -> bool:
        return cls.parse_source_path(path) is not None or cls.parse_generation_path(path) is not None

    # ---------- legacy layout ----------

    @staticmethod
    def parse_legacy_source_path(legacy_path: str) -> Optional[LegacyPathParts]:
        match = _LEGACY_RE.fullmatch(legacy_path)
        if not match:
            return None
        user_id, file_id, extension = match.groups()
        return LegacyPathParts(user_id=UserId(user_id), file_id=FileId(file_id), extension=extension)

    def legacy_source_image_path(self, user_id: UserId, file_id: FileId, extension: str) -> Path:
        return self.user_directory(user_id) / f"{_segment(file_id, 'file id')}{_extension(extension)}"

    def migrate_legacy_source_path(self, legacy_path: str, source_image_id: SourceImageId) -> Optional[str]:
        parsed = self.parse_legacy_source_path(legacy_path)
        if parsed is None:
            return None
        return self.source_image_relative_path(parsed.user_id, source_image_id, parsed.extension)


def sanitize_filename(filename: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
    cleaned = cleaned.lstrip(".").rstrip(".")
    return cleaned[:255]
