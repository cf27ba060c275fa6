import pytest

from room_staging.app.core.security import HmacUrlSigner
from room_staging.app.domain.common.enums import FileStorageProvider, SupportedFileType
from room_staging.app.domain.files.paths import StoragePathManager
from room_staging.app.domain.files.value_objects import FileServiceConfig, LocalStorageConfig
from room_staging.app.infrastructure.files.storage_manager import HierarchicalStorageManager
from tests.unit.fakes.clock import FakeClock


@pytest.fixture
def upload_root(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def local_storage_config(upload_root) -> LocalStorageConfig:
    return LocalStorageConfig(upload_path=str(upload_root), public_path="/uploads")


@pytest.fixture
def file_config(local_storage_config) -> FileServiceConfig:
    return FileServiceConfig(
        provider=FileStorageProvider.LOCAL,
        storage_config=local_storage_config,
        allowed_types=(
            SupportedFileType.JPEG,
            SupportedFileType.PNG,
            SupportedFileType.WEBP,
            SupportedFileType.HEIC,
            SupportedFileType.TIFF,
            SupportedFileType.BMP,
        ),
    )


@pytest.fixture
def paths(upload_root) -> StoragePathManager:
    return StoragePathManager(upload_root, "/uploads")


@pytest.fixture
def storage(local_storage_config) -> HierarchicalStorageManager:
    return HierarchicalStorageManager(local_storage_config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer(clock) -> HmacUrlSigner:
    return HmacUrlSigner("test-signing-secret", clock=clock)
