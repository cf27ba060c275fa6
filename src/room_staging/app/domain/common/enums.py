from __future__ import annotations

from enum import StrEnum


class FileStorageProvider(StrEnum):
    LOCAL = "local"
    S3 = "s3"
    MEMORY = "memory"  # tests only


class SupportedFileType(StrEnum):
    JPEG = "image/jpeg"
    PNG = "image/png"
    WEBP = "image/webp"
    HEIC = "image/heic"  # mobile photos
    TIFF = "image/tiff"  # professional photography
    BMP = "image/bmp"  # legacy Windows bitmaps


class ErrorCategory(StrEnum):
    VALIDATION = "validation"
    UPLOAD = "upload"
    ACCESS = "access"
    SYSTEM = "system"


class UploadStage(StrEnum):
    VALIDATION = "validation"
    PROCESSING = "processing"
    STORAGE = "storage"
    METADATA = "metadata"


class UploadState(StrEnum):
    RECEIVED = "received"
    VALIDATING = "validating"
    REJECTED = "rejected"
    VALIDATED = "validated"
    PROCESSING = "processing"
    PROCESSED = "processed"
    STORING = "storing"
    STORED = "stored"
    FAILED = "failed"
    METADATA_READY = "metadata-ready"


class FileOperation(StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
