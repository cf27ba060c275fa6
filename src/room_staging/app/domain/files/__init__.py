from room_staging.app.domain.files.entities import (
    FileMetadata,
    FileUploadResult,
    GenerationStorageResult,
    ProcessingMetadata,
    StoreGenerationRequest,
    UploadedFile,
    ValidationResult,
)
from room_staging.app.domain.files.value_objects import (
    FileId,
    GenerationId,
    SourceImageId,
    UserId,
    new_file_id,
    new_generation_id,
    new_source_image_id,
)

__all__ = [
    "FileMetadata",
    "FileUploadResult",
    "GenerationStorageResult",
    "ProcessingMetadata",
    "StoreGenerationRequest",
    "UploadedFile",
    "ValidationResult",
    "FileId",
    "GenerationId",
    "SourceImageId",
    "UserId",
    "new_file_id",
    "new_generation_id",
    "new_source_image_id",
]
