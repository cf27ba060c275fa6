from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Union

from room_staging.app.domain.common import Err, Ok, Result
from room_staging.app.domain.common.enums import FileOperation, UploadStage, UploadState
from room_staging.app.domain.files.entities import (
    FileMetadata,
    FileUploadResult,
    GenerationStorageResult,
    ProcessingMetadata,
    StoredFileRecord,
    StoreGenerationRequest,
    UploadedFile,
    ValidationResult,
)
from room_staging.app.domain.files.errors import (
    FILE_NOT_FOUND_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    AccessDetails,
    AccessFailure,
    FileServiceConfigurationError,
    FileServiceErrorCode,
    SystemDetails,
    SystemFailure,
    UploadDetails,
    UploadFailure,
    ValidationDetail,
    ValidationFailure,
    invalid_file_type_message,
)
from room_staging.app.domain.files.interfaces import (
    DeleteResponse,
    FileMetadataRepository,
    UploadResponse,
    UrlSigner,
)
from room_staging.app.domain.files.paths import sanitize_filename
from room_staging.app.domain.files.value_objects import (
    EXTENSION_BY_MIME,
    Dimensions,
    FileId,
    FileServiceConfig,
    GenerationId,
    LocalStorageConfig,
    SourceImageId,
    UserId,
    new_source_image_id,
)
from room_staging.app.infrastructure.files.image_processor import ImageProcessor
from room_staging.app.infrastructure.files.metadata_store import InMemoryFileMetadataRepository
from room_staging.app.infrastructure.files.storage_manager import HierarchicalStorageManager
from room_staging.app.infrastructure.files.validation import FileValidator, ValidationOptions

logger = logging.getLogger(__name__)

DEFAULT_URL_TTL = timedelta(hours=1)


class LocalFileService:
    """
    FileService backed by the local filesystem.

    Upload pipeline: validate -> re-encode -> atomic write -> record metadata.
    Nothing is retried internally; a failed stage returns its typed error and
    leaves no file at the final path.
    """

    def __init__(
        self,
        config: FileServiceConfig,
        *,
        metadata_repo: Optional[FileMetadataRepository] = None,
        url_signer: Optional[UrlSigner] = None,
        url_ttl: timedelta = DEFAULT_URL_TTL,
    ) -> None:
        if not isinstance(config.storage_config, LocalStorageConfig):
            raise FileServiceConfigurationError(
                f"LocalFileService requires local storage configuration, got {config.storage_config.type!r}"
            )
        self._config = config
        self._validator = FileValidator(ValidationOptions.from_config(config))
        self._processor = ImageProcessor(config.image_processing)
        self._storage = HierarchicalStorageManager(config.storage_config)
        self._metadata = metadata_repo or InMemoryFileMetadataRepository()
        self._url_signer = url_signer
        self._url_ttl = url_ttl

    @property
    def config(self) -> FileServiceConfig:
        return self._config

    @property
    def storage(self) -> HierarchicalStorageManager:
        return self._storage

    @property
    def metadata_repository(self) -> FileMetadataRepository:
        return self._metadata

    async def initialize(self) -> None:
        await self._storage.initialize()

    # ---------- uploads ----------

    async def upload_file(
        self,
        upload: UploadedFile,
        user_id: UserId,
        *,
        original_name: Optional[str] = None,
    ) -> UploadResponse:
        return await self.upload_source_image(
            upload, user_id, new_source_image_id(), original_name=original_name
        )

    async def upload_source_image(
        self,
        upload: UploadedFile,
        user_id: UserId,
        source_image_id: SourceImageId,
        *,
        original_name: Optional[str] = None,
    ) -> UploadResponse:
        stage = UploadStage.VALIDATION

        def transition(state: UploadState) -> None:
            logger.debug("upload %s/%s: %s", user_id, source_image_id, state)

        transition(UploadState.RECEIVED)
        try:
            transition(UploadState.VALIDATING)
            validation = await self._validator.validate(upload)
            if not validation.is_valid:
                transition(UploadState.REJECTED)
                return Err(self._validation_failure(validation, user_id=user_id))
            transition(UploadState.VALIDATED)

            stage = UploadStage.PROCESSING
            transition(UploadState.PROCESSING)
            processed = await self._processor.process(upload.data, upload.content_type)
            if isinstance(processed, Err):
                transition(UploadState.FAILED)
                return processed
            image = processed.value
            transition(UploadState.PROCESSED)

            stage = UploadStage.STORAGE
            transition(UploadState.STORING)
            stored = await self._storage.store_source_image(user_id, source_image_id, image.data, image.extension)
            if isinstance(stored, Err):
                transition(UploadState.FAILED)
                return stored
            relative_path = stored.value
            transition(UploadState.STORED)

            stage = UploadStage.METADATA
            metadata = FileMetadata(
                id=FileId(source_image_id),
                user_id=user_id,
                original_name=sanitize_filename(original_name or upload.filename),
                mime_type=image.mime_type,
                size=image.size,
                dimensions=Dimensions(image.width, image.height),
                processing_metadata=ProcessingMetadata(
                    format=image.format,
                    color_space=image.color_space,
                    has_alpha=image.has_alpha,
                    orientation=image.orientation,
                ),
            )
            await self._metadata.add(StoredFileRecord(metadata=metadata, relative_path=relative_path))
            transition(UploadState.METADATA_READY)

            return Ok(FileUploadResult(
                metadata=metadata,
                url=self._storage.paths.public_url(relative_path),
                relative_path=relative_path,
            ))
        except Exception as e:
            logger.exception("Unexpected failure during %s of upload %s", stage, source_image_id)
            transition(UploadState.FAILED)
            return Err(UploadFailure(
                code=FileServiceErrorCode.UPLOAD_FAILED,
                message=UPLOAD_FAILED_MESSAGE,
                details={"reason": str(e)},
                file_id=source_image_id,
                user_id=user_id,
                upload_details=UploadDetails(stage=stage, retryable=True, bytes_processed=upload.size),
            ))

    async def store_generation(
        self, request: StoreGenerationRequest
    ) -> Result[GenerationStorageResult, Union[ValidationFailure, UploadFailure]]:
        if not request.image_data:
            return Err(ValidationFailure(
                code=FileServiceErrorCode.CORRUPTED_FILE,
                message="Generation image data is empty",
                user_id=request.user_id,
                validation_details=(ValidationDetail(
                    field="image_data",
                    message="Generation image data is empty",
                    code=FileServiceErrorCode.CORRUPTED_FILE,
                    constraint="non-empty",
                ),),
            ))
        if request.mime_type not in EXTENSION_BY_MIME:
            message = invalid_file_type_message([t.split("/")[1] for t in EXTENSION_BY_MIME])
            return Err(ValidationFailure(
                code=FileServiceErrorCode.INVALID_FILE_TYPE,
                message=message,
                user_id=request.user_id,
                validation_details=(ValidationDetail(
                    field="mime_type",
                    message=message,
                    code=FileServiceErrorCode.INVALID_FILE_TYPE,
                    constraint="allowed-types",
                    actual=str(request.mime_type),
                ),),
            ))
        try:
            return await self._storage.store_generation(request)
        except Exception as e:
            logger.exception("Unexpected failure storing generation for %s", request.source_image_id)
            return Err(UploadFailure(
                code=FileServiceErrorCode.UPLOAD_FAILED,
                message=UPLOAD_FAILED_MESSAGE,
                details={"reason": str(e)},
                user_id=request.user_id,
                upload_details=UploadDetails(
                    stage=UploadStage.STORAGE, retryable=True, bytes_processed=len(request.image_data)
                ),
            ))

    # ---------- deletes ----------

    async def delete_file(self, file_id: FileId, user_id: UserId) -> DeleteResponse:
        try:
            record = await self._metadata.get(file_id, user_id)
            if record is None:
                return await self._delete_unrecorded_source(file_id, user_id)

            paths = self._storage.paths
            source = paths.parse_source_path(record.relative_path)
            generation = paths.parse_generation_path(record.relative_path)
            if source is not None:
                result = await self._storage.delete_source_image(
                    source.user_id, source.source_image_id, source.extension
                )
            elif generation is not None:
                result = await self._storage.delete_generation(
                    generation.user_id,
                    generation.source_image_id,
                    generation.variation_index,
                    generation.generation_id,
                    generation.extension,
                )
            else:
                raise AssertionError(f"Stored path is not hierarchical: {record.relative_path}")

            if isinstance(result, Ok):
                await self._metadata.delete(file_id, user_id)
            return result
        except Exception as e:
            return Err(self._system_failure(
                FileServiceErrorCode.DELETION_FAILED, "Failed to delete file", e, file_id=file_id, user_id=user_id
            ))

    async def _delete_unrecorded_source(self, file_id: FileId, user_id: UserId) -> DeleteResponse:
        # files written by an earlier process: the id doubles as the source image id
        source_image_id = SourceImageId(file_id)
        try:
            for extension in dict.fromkeys(EXTENSION_BY_MIME.values()):
                if await self._storage.source_image_exists(user_id, source_image_id, extension):
                    return await self._storage.delete_source_image(user_id, source_image_id, extension)
        except ValueError:
            logger.debug("Not a storable file id: %r", file_id)
        return Err(self._not_found(file_id, user_id, FileOperation.DELETE))

    async def delete_source_image(
        self, user_id: UserId, source_image_id: SourceImageId, extension: str
    ) -> DeleteResponse:
        try:
            result = await self._storage.delete_source_image(user_id, source_image_id, extension)
        except ValueError:
            logger.debug("Rejected source image delete for %r%r", source_image_id, extension)
            return Err(self._not_found(source_image_id, user_id, FileOperation.DELETE))
        if isinstance(result, Ok):
            await self._metadata.delete(FileId(source_image_id), user_id)
        return result

    async def delete_generation(
        self,
        user_id: UserId,
        source_image_id: SourceImageId,
        variation_index: int,
        generation_id: GenerationId,
        extension: str,
    ) -> DeleteResponse:
        try:
            return await self._storage.delete_generation(
                user_id, source_image_id, variation_index, generation_id, extension
            )
        except ValueError:
            logger.debug("Rejected generation delete for %r%r", generation_id, extension)
            return Err(self._not_found(generation_id, user_id, FileOperation.DELETE))

    # ---------- lookups ----------

    async def get_file_url(
        self, file_id: FileId, user_id: UserId, *, expires_in: Optional[timedelta] = None
    ) -> Result[str, Union[AccessFailure, SystemFailure]]:
        try:
            record = await self._metadata.get(file_id, user_id)
            if record is None:
                return Err(self._not_found(file_id, user_id, FileOperation.READ))
            if self._url_signer is None:
                return Ok(self._storage.paths.public_url(record.relative_path))
            expires_at = self._url_signer.expires_at(expires_in or self._url_ttl)
            return Ok(self._url_signer.sign_url(record.relative_path, user_id, expires_at))
        except Exception as e:
            return Err(self._system_failure(
                FileServiceErrorCode.URL_GENERATION_FAILED, "Failed to generate file URL", e,
                file_id=file_id, user_id=user_id,
            ))

    async def validate_file(self, upload: UploadedFile) -> Result[ValidationResult, ValidationFailure]:
        result = await self._validator.validate(upload)
        if result.is_valid:
            return Ok(result)
        return Err(self._validation_failure(result))

    async def get_file_metadata(
        self, file_id: FileId, user_id: UserId
    ) -> Result[FileMetadata, Union[AccessFailure, SystemFailure]]:
        try:
            record = await self._metadata.get(file_id, user_id)
        except Exception as e:
            return Err(self._system_failure(
                FileServiceErrorCode.METADATA_RETRIEVAL_FAILED, "Failed to retrieve file metadata", e,
                file_id=file_id, user_id=user_id,
            ))
        if record is None:
            return Err(self._not_found(file_id, user_id, FileOperation.READ))
        return Ok(record.metadata)

    # ---------- failure builders ----------

    @staticmethod
    def _validation_failure(result: ValidationResult, *, user_id: Optional[str] = None) -> ValidationFailure:
        first = result.issues[0]
        return ValidationFailure(
            code=first.code,
            message=first.message if len(result.issues) == 1 else "File validation failed",
            details={"errors": result.errors},
            user_id=user_id,
            validation_details=result.issues,
        )

    @staticmethod
    def _not_found(file_id: str, user_id: str, operation: FileOperation) -> AccessFailure:
        return AccessFailure(
            code=FileServiceErrorCode.FILE_NOT_FOUND,
            message=FILE_NOT_FOUND_MESSAGE,
            file_id=file_id,
            user_id=user_id,
            access_details=AccessDetails(requested_operation=operation, resource=file_id),
        )

    @staticmethod
    def _system_failure(
        code: FileServiceErrorCode, message: str, e: Exception, *, file_id: str, user_id: str
    ) -> SystemFailure:
        logger.exception("%s (file=%s user=%s)", message, file_id, user_id)
        return SystemFailure(
            code=code,
            message=message,
            details={"reason": str(e)},
            file_id=file_id,
            user_id=user_id,
            system_details=SystemDetails(component="local-file-service", recoverable=True),
        )
