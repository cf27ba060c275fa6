from datetime import timedelta
from functools import lru_cache
from typing import Optional

from room_staging.app.application.files.use_cases import (
    MigrateLegacySourcesUseCase,
    ServeSignedFileUseCase,
)
from room_staging.app.core.config import get_settings
from room_staging.app.core.security import HmacUrlSigner
from room_staging.app.domain.common.enums import FileStorageProvider
from room_staging.app.domain.files.errors import FileServiceConfigurationError
from room_staging.app.domain.files.interfaces import FileService
from room_staging.app.infrastructure.files.factory import FileServiceFactory
from room_staging.app.infrastructure.files.storage_manager import HierarchicalStorageManager


@lru_cache
def get_url_signer() -> Optional[HmacUrlSigner]:
    secret = get_settings().FILE_SIGNING_SECRET
    if secret is None:
        return None
    return HmacUrlSigner(secret.get_secret_value())


def require_url_signer() -> HmacUrlSigner:
    signer = get_url_signer()
    if signer is None:
        raise FileServiceConfigurationError('FILE_SIGNING_SECRET must be set to sign file URLs')
    return signer


@lru_cache
def get_file_service_factory() -> FileServiceFactory:
    ttl = timedelta(seconds=get_settings().FILE_URL_TTL_SECONDS)
    return FileServiceFactory(url_signer=get_url_signer(), url_ttl=ttl)


@lru_cache
def get_file_service() -> FileService:
    """
    Process-wide file service built from the environment.
    Swap the provider through FILE_SERVICE_PROVIDER without touching callers.
    """
    return get_file_service_factory().create_file_service(get_settings().to_file_service_config())


@lru_cache
def get_storage_manager() -> HierarchicalStorageManager:
    config = get_settings().to_file_service_config()
    if config.provider is not FileStorageProvider.LOCAL:
        raise FileServiceConfigurationError(
            f'Storage maintenance is only available for the local provider, not {config.provider}'
        )
    return HierarchicalStorageManager(config.storage_config)


def get_serve_signed_file_use_case() -> ServeSignedFileUseCase:
    return ServeSignedFileUseCase(require_url_signer(), get_storage_manager())


def get_migrate_legacy_sources_use_case() -> MigrateLegacySourcesUseCase:
    return MigrateLegacySourcesUseCase(get_storage_manager())
