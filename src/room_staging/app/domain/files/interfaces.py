from datetime import timedelta
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

from room_staging.app.domain.common import Result
from room_staging.app.domain.files.entities import (
    FileMetadata,
    FileUploadResult,
    GenerationStorageResult,
    MigrationOutcome,
    StoredFileContent,
    StoredFileRecord,
    StoreGenerationRequest,
    UploadedFile,
    ValidationResult,
)
from room_staging.app.domain.files.errors import (
    AccessFailure,
    FileServiceFailure,
    SystemFailure,
    UploadFailure,
    ValidationFailure,
)
from room_staging.app.domain.files.value_objects import (
    FileId,
    GenerationId,
    SourceImageId,
    UserId,
)

UploadResponse = Result[FileUploadResult, Union[ValidationFailure, UploadFailure, SystemFailure]]
DeleteResponse = Result[None, Union[AccessFailure, SystemFailure]]


@runtime_checkable
class FileService(Protocol):
    """Provider-agnostic entry point used by every other subsystem."""

    async def upload_file(
        self,
        upload: UploadedFile,
        user_id: UserId,
        *,
        original_name: Optional[str] = None,
    ) -> UploadResponse:
        ...

    async def upload_source_image(
        self,
        upload: UploadedFile,
        user_id: UserId,
        source_image_id: SourceImageId,
        *,
        original_name: Optional[str] = None,
    ) -> UploadResponse:
        ...

    async def store_generation(
        self, request: StoreGenerationRequest
    ) -> Result[GenerationStorageResult, Union[ValidationFailure, UploadFailure]]:
        ...

    async def delete_file(self, file_id: FileId, user_id: UserId) -> DeleteResponse:
        ...

    async def delete_source_image(
        self, user_id: UserId, source_image_id: SourceImageId, extension: str
    ) -> DeleteResponse:
        ...

    async def delete_generation(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> DeleteResponse:
        ...

    async def get_file_url(
        self, file_id: FileId, user_id: UserId, *, expires_in: Optional[timedelta] = None
    ) -> Result[str, Union[AccessFailure, SystemFailure]]:
        ...

    async def validate_file(self, upload: UploadedFile) -> Result[ValidationResult, ValidationFailure]:
        ...

    async def get_file_metadata(
        self, file_id: FileId, user_id: UserId
    ) -> Result[FileMetadata, Union[AccessFailure, SystemFailure]]:
        ...


class FileMetadataRepository(Protocol):
    async def add(self, record: StoredFileRecord) -> None: ...

    async def get(self, file_id: FileId, user_id: UserId) -> Optional[StoredFileRecord]:
        """Returns None when the file is unknown or owned by someone else."""
        ...

    async def delete(self, file_id: FileId, user_id: UserId) -> bool: ...


class StoredFileReader(Protocol):
    def resolve_secure_path(self, relative_path: str) -> Optional[Path]: ...

    async def read_file(self, relative_path: str) -> Result[StoredFileContent, AccessFailure]: ...


class LegacySourceMigrator(Protocol):
    async def migrate_legacy_source_image(
        self, legacy_path: str, source_image_id: SourceImageId
    ) -> MigrationOutcome: ...


class UrlSigner(Protocol):
    def sign_url(self, file_path: str, user_id: str, expires_at: int) -> str: ...

    def verify(
        self,
        file_path: Optional[str],
        user_id: Optional[str],
        expires: Optional[str],
        signature: Optional[str],
        *,
        now: Optional[int] = None,
    ) -> Result[None, AccessFailure]: ...

    def expires_at(self, ttl: timedelta, *, now: Optional[int] = None) -> int: ...


__all__ = [
    "FileService",
    "FileMetadataRepository",
    "StoredFileReader",
    "LegacySourceMigrator",
    "UrlSigner",
    "UploadResponse",
    "DeleteResponse",
    "FileServiceFailure",
]
