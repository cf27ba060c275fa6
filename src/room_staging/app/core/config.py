from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from room_staging.app.domain.common.enums import FileStorageProvider, SupportedFileType
from room_staging.app.domain.files.errors import FileServiceConfigurationError
from room_staging.app.domain.files.value_objects import (
    Dimensions,
    FileServiceConfig,
    ImageProcessingConfig,
    LocalStorageConfig,
    QualitySettings,
    S3StorageConfig,
    StorageConfig,
)

_S3_REQUIRED = ("AWS_S3_BUCKET", "AWS_S3_REGION", "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', case_sensitive=True, extra='ignore')

    FILE_SERVICE_PROVIDER: FileStorageProvider = FileStorageProvider.LOCAL
    FILE_MAX_SIZE: int = Field(default=10 * 1024 * 1024, gt=0)
    FILE_ALLOWED_TYPES: str = 'image/jpeg,image/png,image/webp'
    FILE_UPLOAD_PATH: str = Field(default='./uploads', min_length=1)
    FILE_PUBLIC_PATH: str = Field(default='/uploads', min_length=1)
    FILE_CREATE_DIRECTORIES: bool = True
    FILE_SECURITY_SCAN: bool = True

    AWS_S3_BUCKET: Optional[str] = None
    AWS_S3_REGION: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    AWS_S3_PUBLIC_URL_BASE: Optional[str] = None

    IMAGE_JPEG_QUALITY: int = Field(default=85, ge=1, le=100)
    IMAGE_WEBP_QUALITY: int = Field(default=80, ge=1, le=100)
    IMAGE_PNG_QUALITY: int = Field(default=9, ge=0, le=9)
    IMAGE_MAX_WIDTH: int = Field(default=4096, gt=0)
    IMAGE_MAX_HEIGHT: int = Field(default=4096, gt=0)
    IMAGE_ENABLE_OPTIMIZATION: bool = True
    IMAGE_PRESERVE_METADATA: bool = False

    FILE_SIGNING_SECRET: Optional[SecretStr] = None
    FILE_URL_TTL_SECONDS: int = Field(default=3600, gt=0)

    @field_validator('FILE_ALLOWED_TYPES')
    @classmethod
    def _known_types(cls, value: str) -> str:
        types = [t.strip().lower() for t in value.split(',') if t.strip()]
        if not types:
            raise ValueError('At least one file type must be allowed')
        unknown = [t for t in types if t not in set(SupportedFileType)]
        if unknown:
            raise ValueError(f"Unsupported file types: {', '.join(unknown)}")
        return ','.join(types)

    @model_validator(mode='after')
    def _s3_credentials(self) -> 'Settings':
        if self.FILE_SERVICE_PROVIDER is FileStorageProvider.S3:
            missing = [name for name in _S3_REQUIRED if not getattr(self, name)]
            if missing:
                raise ValueError(f"S3 provider requires: {', '.join(missing)}")
        return self

    @property
    def allowed_types(self) -> tuple[SupportedFileType, ...]:
        return tuple(SupportedFileType(t) for t in self.FILE_ALLOWED_TYPES.split(','))

    def storage_config(self) -> StorageConfig:
        if self.FILE_SERVICE_PROVIDER is FileStorageProvider.S3:
            return S3StorageConfig(
                bucket=self.AWS_S3_BUCKET,
                region=self.AWS_S3_REGION,
                access_key_id=self.AWS_ACCESS_KEY_ID,
                secret_access_key=self.AWS_SECRET_ACCESS_KEY.get_secret_value(),
                public_url_base=self.AWS_S3_PUBLIC_URL_BASE,
            )
        return LocalStorageConfig(
            upload_path=self.FILE_UPLOAD_PATH,
            public_path=self.FILE_PUBLIC_PATH,
            create_directories=self.FILE_CREATE_DIRECTORIES,
        )

    def to_file_service_config(self) -> FileServiceConfig:
        try:
            return FileServiceConfig(
                provider=self.FILE_SERVICE_PROVIDER,
                storage_config=self.storage_config(),
                max_file_size=self.FILE_MAX_SIZE,
                allowed_types=self.allowed_types,
                image_processing=ImageProcessingConfig(
                    quality=QualitySettings(
                        jpeg=self.IMAGE_JPEG_QUALITY,
                        webp=self.IMAGE_WEBP_QUALITY,
                        png=self.IMAGE_PNG_QUALITY,
                    ),
                    max_dimensions=Dimensions(self.IMAGE_MAX_WIDTH, self.IMAGE_MAX_HEIGHT),
                    enable_optimization=self.IMAGE_ENABLE_OPTIMIZATION,
                    preserve_metadata=self.IMAGE_PRESERVE_METADATA,
                ),
                enable_security_scanning=self.FILE_SECURITY_SCAN,
            )
        except ValueError as e:
            raise FileServiceConfigurationError(str(e)) from e


@lru_cache
def get_settings() -> Settings:
    """Read and validate the environment once per process."""
    try:
        return Settings()
    except ValidationError as e:
        raise FileServiceConfigurationError(f"Invalid file service configuration: {e}") from e
