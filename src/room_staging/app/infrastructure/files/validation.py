"""
Upload admission pipeline.

Stages run in a fixed order and every issue found is reported, except that a
failure of the basic checks (type, size) stops the pipeline before the bytes
are handed to an image decoder.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from room_staging.app.domain.common.enums import SupportedFileType
from room_staging.app.domain.files.entities import ImageInfo, UploadedFile, ValidationResult
from room_staging.app.domain.files.errors import (
    CORRUPTED_FILE_MESSAGE,
    MALICIOUS_CONTENT_MESSAGE,
    FileServiceErrorCode,
    ValidationDetail,
    file_too_large_message,
    invalid_dimensions_message,
    invalid_file_type_message,
)
from room_staging.app.domain.files.value_objects import Dimensions, FileServiceConfig
from room_staging.app.infrastructure.files.codecs import mime_for_pil_format, register_codecs

logger = logging.getLogger(__name__)

MIN_IMAGE_DIMENSION = 10
MAX_EXIF_BYTES = 64_000
MAX_ICC_BYTES = 100_000

_SUSPICIOUS_PATTERNS = (
    re.compile(rb"<script\b", re.IGNORECASE),
    re.compile(rb"<\?php", re.IGNORECASE),
    re.compile(rb"<iframe\b", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class ValidationOptions:
    max_file_size: int
    allowed_types: tuple[SupportedFileType, ...]
    max_dimensions: Dimensions
    enable_security_scanning: bool = True

    @classmethod
    def from_config(cls, config: FileServiceConfig) -> "ValidationOptions":
        return cls(
            max_file_size=config.max_file_size,
            allowed_types=config.allowed_types,
            max_dimensions=config.image_processing.max_dimensions,
            enable_security_scanning=config.enable_security_scanning,
        )


@dataclass(frozen=True, slots=True)
class _Inspection:
    info: Optional[ImageInfo]
    exif_size: int = 0
    icc_size: int = 0


class FileValidator:
    def __init__(self, options: ValidationOptions) -> None:
        self._options = options
        register_codecs()

    @property
    def options(self) -> ValidationOptions:
        return self._options

    async def validate(self, upload: UploadedFile) -> ValidationResult:
        return await asyncio.to_thread(self.validate_sync, upload)

    def validate_sync(self, upload: UploadedFile) -> ValidationResult:
        issues: list[ValidationDetail] = list(self._check_basic_properties(upload))
        if issues:
            return ValidationResult(issues=tuple(issues))

        inspection, image_issues = self._inspect_image(upload.data, upload.content_type)
        issues.extend(image_issues)

        if self._options.enable_security_scanning:
            issues.extend(self._security_scan(upload.data, inspection))

        if issues:
            logger.debug("Rejected %s: %s", upload.filename, [i.message for i in issues])
            return ValidationResult(issues=tuple(issues))
        return ValidationResult(metadata=inspection.info)

    # ---------- stage 1 ----------

    def _check_basic_properties(self, upload: UploadedFile) -> list[ValidationDetail]:
        issues: list[ValidationDetail] = []
        allowed = self._options.allowed_types

        if upload.content_type not in allowed:
            issues.append(ValidationDetail(
                field="content_type",
                code=FileServiceErrorCode.INVALID_FILE_TYPE,
                message=invalid_file_type_message([t.split("/")[1] for t in allowed]),
                constraint="allowed-types",
                expected=", ".join(allowed),
                actual=upload.content_type,
            ))

        if upload.size > self._options.max_file_size:
            issues.append(ValidationDetail(
                field="size",
                code=FileServiceErrorCode.FILE_TOO_LARGE,
                message=file_too_large_message(self._options.max_file_size),
                constraint="max-size",
                expected=self._options.max_file_size,
                actual=upload.size,
            ))

        if upload.size == 0:
            issues.append(ValidationDetail(
                field="size",
                code=FileServiceErrorCode.CORRUPTED_FILE,
                message="File cannot be empty",
                constraint="non-empty",
                actual=0,
            ))
        return issues

    # ---------- stages 2-4 ----------

    def _inspect_image(self, data: bytes, declared_type: str) -> tuple[_Inspection, list[ValidationDetail]]:
        issues: list[ValidationDetail] = []
        try:
            with Image.open(BytesIO(data)) as img:
                detected_format = img.format
                width, height = img.size
                inspection = _Inspection(
                    info=ImageInfo(width=width, height=height, format=(detected_format or "").lower(), size=len(data)),
                    exif_size=len(img.info.get("exif") or b""),
                    icc_size=len(img.info.get("icc_profile") or b""),
                )

                if mime_for_pil_format(detected_format) != declared_type:
                    issues.append(ValidationDetail(
                        field="content",
                        code=FileServiceErrorCode.INVALID_FILE_TYPE,
                        message=f"File content does not match declared type {declared_type}",
                        constraint="format-consistency",
                        expected=declared_type,
                        actual=detected_format or "unknown",
                    ))

                dimension_issues = self._check_dimensions(width, height)
                issues.extend(dimension_issues)

                # only decode the pixels once we know the size is sane
                if not dimension_issues:
                    try:
                        img.load()
                    except (OSError, SyntaxError, ValueError) as e:
                        logger.debug("Pixel decode failed: %s", e)
                        issues.append(ValidationDetail(
                            field="content",
                            code=FileServiceErrorCode.CORRUPTED_FILE,
                            message="Image file appears to be corrupted or invalid",
                            constraint="decodable",
                        ))
                return inspection, issues

        except Image.DecompressionBombError as e:
            logger.warning("Refused to decode oversized image: %s", e)
            issues.append(ValidationDetail(
                field="dimensions",
                code=FileServiceErrorCode.INVALID_DIMENSIONS,
                message="Image pixel count exceeds the safe decoding limit",
                constraint="max-pixels",
            ))
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            logger.debug("Could not identify image: %s", e)
            issues.append(ValidationDetail(
                field="content",
                code=FileServiceErrorCode.CORRUPTED_FILE,
                message=CORRUPTED_FILE_MESSAGE,
                constraint="decodable",
            ))
        return _Inspection(info=None), issues

    def _check_dimensions(self, width: int, height: int) -> list[ValidationDetail]:
        issues: list[ValidationDetail] = []
        max_dims = self._options.max_dimensions
        actual = f"{width}x{height}"

        if width > max_dims.width or height > max_dims.height:
            issues.append(ValidationDetail(
                field="dimensions",
                code=FileServiceErrorCode.INVALID_DIMENSIONS,
                message=invalid_dimensions_message(max_dims.width, max_dims.height),
                constraint="max-dimensions",
                expected=f"{max_dims.width}x{max_dims.height}",
                actual=actual,
            ))

        # rejects 1x1 tracking/probe images
        if width < MIN_IMAGE_DIMENSION or height < MIN_IMAGE_DIMENSION:
            issues.append(ValidationDetail(
                field="dimensions",
                code=FileServiceErrorCode.INVALID_DIMENSIONS,
                message=f"Image dimensions must be at least {MIN_IMAGE_DIMENSION}x{MIN_IMAGE_DIMENSION} pixels",
                constraint="min-dimensions",
                expected=f"{MIN_IMAGE_DIMENSION}x{MIN_IMAGE_DIMENSION}",
                actual=actual,
            ))
        return issues

    # ---------- stage 5 ----------

    def _security_scan(self, data: bytes, inspection: _Inspection) -> list[ValidationDetail]:
        """Heuristics only: a hit means "suspicious", not "proven malicious"."""
        issues: list[ValidationDetail] = []

        for pattern in _SUSPICIOUS_PATTERNS:
            if pattern.search(data):
                issues.append(ValidationDetail(
                    field="content",
                    code=FileServiceErrorCode.MALICIOUS_CONTENT,
                    message=MALICIOUS_CONTENT_MESSAGE,
                    constraint="embedded-markup",
                    actual=pattern.pattern.decode("ascii", "replace"),
                ))
                break

        if inspection.exif_size > MAX_EXIF_BYTES:
            issues.append(ValidationDetail(
                field="metadata",
                code=FileServiceErrorCode.MALICIOUS_CONTENT,
                message="Image contains unusually large EXIF data",
                constraint="max-exif-bytes",
                expected=MAX_EXIF_BYTES,
                actual=inspection.exif_size,
            ))

        if inspection.icc_size > MAX_ICC_BYTES:
            issues.append(ValidationDetail(
                field="metadata",
                code=FileServiceErrorCode.MALICIOUS_CONTENT,
                message="Image contains unusually large color profile",
                constraint="max-icc-bytes",
                expected=MAX_ICC_BYTES,
                actual=inspection.icc_size,
            ))

        if issues:
            logger.warning("Security scan flagged upload: %s", [i.constraint for i in issues])
        return issues
