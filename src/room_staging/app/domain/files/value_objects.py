from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import NewType, Optional, Union
from uuid import uuid4

from room_staging.app.domain.common.enums import FileStorageProvider, SupportedFileType

UserId = NewType("UserId", str)
SourceImageId = NewType("SourceImageId", str)
GenerationId = NewType("GenerationId", str)
FileId = NewType("FileId", str)


def new_source_image_id() -> SourceImageId:
    return SourceImageId(str(uuid4()))


def new_generation_id() -> GenerationId:
    return GenerationId(str(uuid4()))


def new_file_id() -> FileId:
    return FileId(str(uuid4()))


EXTENSION_BY_MIME: dict[SupportedFileType, str] = {
    SupportedFileType.JPEG: ".jpg",
    SupportedFileType.PNG: ".png",
    SupportedFileType.WEBP: ".webp",
    SupportedFileType.HEIC: ".heic",
    SupportedFileType.TIFF: ".tiff",
    SupportedFileType.BMP: ".bmp",
}

MIME_BY_EXTENSION: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".heic": "image/heic",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
}

DEFAULT_ALLOWED_TYPES: tuple[SupportedFileType, ...] = (
    SupportedFileType.JPEG,
    SupportedFileType.PNG,
    SupportedFileType.WEBP,
)


def extension_for(mime_type: Union[str, SupportedFileType]) -> str:
    """Raises ValueError for MIME types the engine does not store."""
    try:
        return EXTENSION_BY_MIME[SupportedFileType(mime_type)]
    except ValueError:
        raise ValueError(f"Unsupported MIME type: {mime_type}") from None


def mime_type_for_extension(extension: str) -> str:
    return MIME_BY_EXTENSION.get(extension.lower(), "application/octet-stream")


@dataclass(frozen=True, slots=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class QualitySettings:
    jpeg: int = 85
    webp: int = 80
    png: int = 9  # zlib compression level, not a quality

    def __post_init__(self) -> None:
        if not 1 <= self.jpeg <= 100:
            raise ValueError("JPEG quality must be between 1-100")
        if not 1 <= self.webp <= 100:
            raise ValueError("WebP quality must be between 1-100")
        if not 0 <= self.png <= 9:
            raise ValueError("PNG compression level must be between 0-9")


@dataclass(frozen=True, slots=True)
class ImageProcessingConfig:
    quality: QualitySettings = field(default_factory=QualitySettings)
    max_dimensions: Dimensions = field(default_factory=lambda: Dimensions(4096, 4096))
    enable_optimization: bool = True
    preserve_metadata: bool = False

    def __post_init__(self) -> None:
        if self.max_dimensions.width <= 0 or self.max_dimensions.height <= 0:
            raise ValueError("Image max dimensions must be greater than 0")


@dataclass(frozen=True, slots=True)
class LocalStorageConfig:
    upload_path: str = "./uploads"
    public_path: str = "/uploads"
    create_directories: bool = True
    type: str = field(default="local", init=False)

    def __post_init__(self) -> None:
        if not self.upload_path or not self.public_path:
            raise ValueError("Local storage requires upload_path and public_path")


@dataclass(frozen=True, slots=True)
class S3StorageConfig:
    bucket: str
    region: str
    access_key_id: str
    secret_access_key: str
    public_url_base: Optional[str] = None
    type: str = field(default="s3", init=False)

    def __post_init__(self) -> None:
        if not (self.bucket and self.region and self.access_key_id and self.secret_access_key):
            raise ValueError(
                "S3 storage requires bucket, region, access_key_id and secret_access_key"
            )


StorageConfig = Union[LocalStorageConfig, S3StorageConfig]


@dataclass(frozen=True, slots=True)
class FileServiceConfig:
    provider: FileStorageProvider
    storage_config: StorageConfig
    max_file_size: int = 10 * 1024 * 1024
    allowed_types: tuple[SupportedFileType, ...] = DEFAULT_ALLOWED_TYPES
    image_processing: ImageProcessingConfig = field(default_factory=ImageProcessingConfig)
    enable_security_scanning: bool = True

    def __post_init__(self) -> None:
        if self.max_file_size <= 0:
            raise ValueError("Maximum file size must be greater than 0")
        if not self.allowed_types:
            raise ValueError("At least one file type must be allowed")
        # normalize so that structurally equal configs compare equal
        normalized = tuple(sorted({SupportedFileType(t) for t in self.allowed_types}))
        object.__setattr__(self, "allowed_types", normalized)

    def to_dict(self) -> dict:
        storage = self.storage_config
        if isinstance(storage, LocalStorageConfig):
            storage_dict = {
                "type": storage.type,
                "upload_path": storage.upload_path,
                "public_path": storage.public_path,
                "create_directories": storage.create_directories,
            }
        else:
            storage_dict = {
                "type": storage.type,
                "bucket": storage.bucket,
                "region": storage.region,
                "access_key_id": storage.access_key_id,
                "secret_access_key": storage.secret_access_key,
                "public_url_base": storage.public_url_base,
            }
        img = self.image_processing
        return {
            "provider": str(self.provider),
            "max_file_size": int(self.max_file_size),
            "allowed_types": [str(t) for t in self.allowed_types],
            "storage_config": storage_dict,
            "image_processing": {
                "quality": {
                    "jpeg": img.quality.jpeg,
                    "webp": img.quality.webp,
                    "png": img.quality.png,
                },
                "max_dimensions": {
                    "width": img.max_dimensions.width,
                    "height": img.max_dimensions.height,
                },
                "enable_optimization": img.enable_optimization,
                "preserve_metadata": img.preserve_metadata,
            },
            "enable_security_scanning": self.enable_security_scanning,
        }

    def canonical_json(self) -> str:
        return json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )

    def signature(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()
