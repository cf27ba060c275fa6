from __future__ import annotations

import logging
import threading
from typing import Any, Callable, ClassVar

from room_staging.app.domain.common.enums import FileStorageProvider
from room_staging.app.domain.files.errors import FileServiceConfigurationError
from room_staging.app.domain.files.interfaces import FileService
from room_staging.app.domain.files.value_objects import FileServiceConfig, LocalStorageConfig
from room_staging.app.infrastructure.files.local_file_service import LocalFileService

logger = logging.getLogger(__name__)

FileServiceConstructor = Callable[..., FileService]


class FileServiceFactory:
    """
    Maps a provider tag to a FileService implementation.

    The registry is shared by every factory; the instance cache is per
    factory and keyed by the configuration's canonical signature, so two
    structurally equal configs yield the same service.
    """

    _registry: ClassVar[dict[FileStorageProvider, FileServiceConstructor]] = {}

    def __init__(self, **service_options: Any) -> None:
        self._service_options = service_options
        self._services: dict[str, FileService] = {}
        self._lock = threading.Lock()

    @classmethod
    def register_implementation(cls, provider: FileStorageProvider, implementation: FileServiceConstructor) -> None:
        cls._registry[FileStorageProvider(provider)] = implementation

    @classmethod
    def unregister_implementation(cls, provider: FileStorageProvider) -> None:
        cls._registry.pop(FileStorageProvider(provider), None)

    @classmethod
    def is_provider_supported(cls, provider: FileStorageProvider | str) -> bool:
        try:
            return FileStorageProvider(provider) in cls._registry
        except ValueError:
            return False

    @classmethod
    def supported_providers(cls) -> list[FileStorageProvider]:
        return list(cls._registry)

    def create_file_service(self, config: FileServiceConfig) -> FileService:
        key = config.signature()
        with self._lock:
            service = self._services.get(key)
            if service is not None:
                return service

            implementation = self._registry.get(config.provider)
            if implementation is None:
                supported = ", ".join(self.supported_providers())
                raise FileServiceConfigurationError(
                    f"No implementation found for provider: {config.provider}. "
                    f"Supported providers: {supported}"
                )

            try:
                service = implementation(config, **self._service_options)
            except FileServiceConfigurationError:
                raise
            except Exception as e:
                logger.exception("Failed to construct %s file service", config.provider)
                raise FileServiceConfigurationError(f"Failed to create file service: {e}") from e

            self._services[key] = service
            logger.info("Created %s file service (config %s)", config.provider, key[:12])
            return service

    def create_default_file_service(self) -> FileService:
        return self.create_file_service(
            FileServiceConfig(provider=FileStorageProvider.LOCAL, storage_config=LocalStorageConfig())
        )

    def clear_cache(self) -> None:
        with self._lock:
            self._services.clear()


FileServiceFactory.register_implementation(FileStorageProvider.LOCAL, LocalFileService)
