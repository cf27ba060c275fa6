from .migrate_legacy_sources import MigrateLegacySourcesUseCase
from .serve_signed_file import ServeSignedFileUseCase

__all__ = [
    "MigrateLegacySourcesUseCase",
    "ServeSignedFileUseCase",
]
