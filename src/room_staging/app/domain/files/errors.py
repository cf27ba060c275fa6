from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Optional, Union

from room_staging.app.domain.common import utcnow
from room_staging.app.domain.common.enums import ErrorCategory, FileOperation, UploadStage


class FileServiceErrorCode(StrEnum):
    # validation
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_DIMENSIONS = "INVALID_DIMENSIONS"
    CORRUPTED_FILE = "CORRUPTED_FILE"
    MALICIOUS_CONTENT = "MALICIOUS_CONTENT"

    # upload
    UPLOAD_FAILED = "UPLOAD_FAILED"
    STORAGE_FULL = "STORAGE_FULL"
    PROCESSING_FAILED = "PROCESSING_FAILED"

    # access
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    UNAUTHORIZED = "UNAUTHORIZED"

    # system
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"

    # operation
    DELETION_FAILED = "DELETION_FAILED"
    URL_GENERATION_FAILED = "URL_GENERATION_FAILED"
    METADATA_RETRIEVAL_FAILED = "METADATA_RETRIEVAL_FAILED"


VALIDATION_CODES = frozenset({
    FileServiceErrorCode.INVALID_FILE_TYPE,
    FileServiceErrorCode.FILE_TOO_LARGE,
    FileServiceErrorCode.INVALID_DIMENSIONS,
    FileServiceErrorCode.CORRUPTED_FILE,
    FileServiceErrorCode.MALICIOUS_CONTENT,
})
UPLOAD_CODES = frozenset({
    FileServiceErrorCode.UPLOAD_FAILED,
    FileServiceErrorCode.STORAGE_FULL,
    FileServiceErrorCode.PROCESSING_FAILED,
})
ACCESS_CODES = frozenset({
    FileServiceErrorCode.FILE_NOT_FOUND,
    FileServiceErrorCode.ACCESS_DENIED,
    FileServiceErrorCode.UNAUTHORIZED,
})
SYSTEM_CODES = frozenset({
    FileServiceErrorCode.SERVICE_UNAVAILABLE,
    FileServiceErrorCode.CONFIGURATION_ERROR,
    FileServiceErrorCode.NETWORK_ERROR,
    FileServiceErrorCode.DELETION_FAILED,
    FileServiceErrorCode.URL_GENERATION_FAILED,
    FileServiceErrorCode.METADATA_RETRIEVAL_FAILED,
})


def category_of(code: FileServiceErrorCode) -> ErrorCategory:
    if code in VALIDATION_CODES:
        return ErrorCategory.VALIDATION
    if code in UPLOAD_CODES:
        return ErrorCategory.UPLOAD
    if code in ACCESS_CODES:
        return ErrorCategory.ACCESS
    if code in SYSTEM_CODES:
        return ErrorCategory.SYSTEM
    raise AssertionError(f"Unmapped error code: {code}")


@dataclass(frozen=True, slots=True)
class ValidationDetail:
    field: str
    message: str
    code: FileServiceErrorCode
    constraint: Optional[str] = None
    expected: Optional[Union[str, int]] = None
    actual: Optional[Union[str, int]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "message": self.message,
            "code": str(self.code),
            "constraint": self.constraint,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass(frozen=True, slots=True)
class UploadDetails:
    stage: UploadStage
    retryable: bool
    bytes_processed: Optional[int] = None


@dataclass(frozen=True, slots=True)
class AccessDetails:
    requested_operation: FileOperation
    resource: str


@dataclass(frozen=True, slots=True)
class SystemDetails:
    component: str
    recoverable: bool
    retry_after: Optional[int] = None


@dataclass(frozen=True, kw_only=True)
class FileServiceFailure:
    code: FileServiceErrorCode
    message: str
    details: Optional[dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)
    file_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def category(self) -> ErrorCategory:
        return category_of(self.code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": str(self.code),
                "message": self.message,
                "details": self.details,
            },
        }


@dataclass(frozen=True, kw_only=True)
class ValidationFailure(FileServiceFailure):
    validation_details: tuple[ValidationDetail, ...] = ()

    def __post_init__(self) -> None:
        if self.code not in VALIDATION_CODES:
            raise ValueError(f"{self.code} is not a validation error code")

    @property
    def errors(self) -> list[str]:
        return [d.message for d in self.validation_details]

    def to_dict(self) -> dict[str, Any]:
        out = FileServiceFailure.to_dict(self)
        out["error"]["validation"] = [d.to_dict() for d in self.validation_details]
        return out


@dataclass(frozen=True, kw_only=True)
class UploadFailure(FileServiceFailure):
    upload_details: Optional[UploadDetails] = None

    def __post_init__(self) -> None:
        if self.code not in UPLOAD_CODES:
            raise ValueError(f"{self.code} is not an upload error code")

    @property
    def retryable(self) -> bool:
        return bool(self.upload_details and self.upload_details.retryable)


@dataclass(frozen=True, kw_only=True)
class AccessFailure(FileServiceFailure):
    access_details: Optional[AccessDetails] = None

    def __post_init__(self) -> None:
        if self.code not in ACCESS_CODES:
            raise ValueError(f"{self.code} is not an access error code")


@dataclass(frozen=True, kw_only=True)
class SystemFailure(FileServiceFailure):
    system_details: Optional[SystemDetails] = None

    def __post_init__(self) -> None:
        if self.code not in SYSTEM_CODES:
            raise ValueError(f"{self.code} is not a system error code")


class FileServiceConfigurationError(Exception):
    """Raised at start-up when the file service configuration is unusable."""

    def __init__(self, message: str):
        super().__init__(message)
        self.failure = SystemFailure(
            code=FileServiceErrorCode.CONFIGURATION_ERROR,
            message=message,
            system_details=SystemDetails(component="configuration", recoverable=False),
        )


# ---------- common messages ----------

def invalid_file_type_message(allowed: list[str]) -> str:
    return f"File type not supported. Allowed types: {', '.join(allowed)}"


def file_too_large_message(max_size: int) -> str:
    return f"File size exceeds maximum limit of {max_size / 1024 / 1024:.1f}MB"


def invalid_dimensions_message(max_width: int, max_height: int) -> str:
    return f"Image dimensions exceed maximum of {max_width}x{max_height}px"


CORRUPTED_FILE_MESSAGE = "File appears to be corrupted or invalid"
MALICIOUS_CONTENT_MESSAGE = "File contains potentially malicious patterns"
FILE_NOT_FOUND_MESSAGE = "Requested file was not found"
ACCESS_DENIED_MESSAGE = "You do not have permission to access this file"
UNAUTHORIZED_MESSAGE = "Authentication required to perform this operation"
UPLOAD_FAILED_MESSAGE = "Failed to upload file due to server error"
STORAGE_FULL_MESSAGE = "Storage capacity exceeded, please try again later"
PROCESSING_FAILED_MESSAGE = "Failed to process uploaded file"
