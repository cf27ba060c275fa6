from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from room_staging.app.domain.common import utcnow
from room_staging.app.domain.common.enums import SupportedFileType
from room_staging.app.domain.files.errors import ValidationDetail
from room_staging.app.domain.files.value_objects import (
    Dimensions,
    FileId,
    GenerationId,
    SourceImageId,
    UserId,
)


@dataclass(frozen=True)
class UploadedFile:
    """Raw upload as handed over by the transport layer."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class ProcessingMetadata:
    format: str
    color_space: str
    has_alpha: bool
    orientation: Optional[int] = None


@dataclass(frozen=True)
class FileMetadata:
    id: FileId
    user_id: UserId
    original_name: str
    mime_type: SupportedFileType
    size: int
    dimensions: Optional[Dimensions] = None
    uploaded_at: datetime = field(default_factory=utcnow)
    processing_metadata: Optional[ProcessingMetadata] = None


@dataclass(frozen=True, slots=True)
class ImageInfo:
    width: int
    height: int
    format: str
    size: int


@dataclass(frozen=True)
class ValidationResult:
    issues: tuple[ValidationDetail, ...] = ()
    metadata: Optional[ImageInfo] = None

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues]


@dataclass(frozen=True)
class ProcessedImage:
    data: bytes
    width: int
    height: int
    format: str
    mime_type: SupportedFileType
    extension: str
    color_space: str
    has_alpha: bool
    orientation: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class FileUploadResult:
    metadata: FileMetadata
    url: str
    relative_path: str


@dataclass(frozen=True)
class StoreGenerationRequest:
    user_id: UserId
    source_image_id: SourceImageId
    variation_index: int
    image_data: bytes
    mime_type: SupportedFileType
    job_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.variation_index < 0:
            raise ValueError("variation_index must be >= 0")


@dataclass(frozen=True)
class GenerationStorageResult:
    generation_id: GenerationId
    relative_path: str
    public_url: str
    file_path: Path
    variation_index: int


@dataclass(frozen=True)
class StoredFileRecord:
    """What the facade remembers about an upload until the persistence layer takes over."""
    metadata: FileMetadata
    relative_path: str


@dataclass(frozen=True)
class StoredFileContent:
    relative_path: str
    content: bytes
    size: int
    modified_at: datetime


@dataclass(frozen=True)
class MigrationOutcome:
    legacy_path: str
    success: bool
    new_path: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class StorageStats:
    total_files: int = 0
    total_size: int = 0
    by_extension: dict[str, dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_files": self.total_files,
            "total_size": self.total_size,
            "by_extension": self.by_extension,
        }
