from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import Any

from PIL import ExifTags, Image, ImageOps

from room_staging.app.domain.common import Err, Ok, Result
from room_staging.app.domain.common.enums import SupportedFileType, UploadStage
from room_staging.app.domain.files.entities import ProcessedImage
from room_staging.app.domain.files.errors import (
    PROCESSING_FAILED_MESSAGE,
    FileServiceErrorCode,
    UploadDetails,
    UploadFailure,
)
from room_staging.app.domain.files.value_objects import ImageProcessingConfig, extension_for
from room_staging.app.infrastructure.files.codecs import register_codecs

logger = logging.getLogger(__name__)

# declared input type -> type we store it as
OUTPUT_TYPE_BY_INPUT: dict[SupportedFileType, SupportedFileType] = {
    SupportedFileType.JPEG: SupportedFileType.JPEG,
    SupportedFileType.PNG: SupportedFileType.PNG,
    SupportedFileType.WEBP: SupportedFileType.WEBP,
    SupportedFileType.HEIC: SupportedFileType.JPEG,
    SupportedFileType.TIFF: SupportedFileType.TIFF,
    SupportedFileType.BMP: SupportedFileType.PNG,
}

_PIL_FORMAT_BY_TYPE: dict[SupportedFileType, str] = {
    SupportedFileType.JPEG: "JPEG",
    SupportedFileType.PNG: "PNG",
    SupportedFileType.WEBP: "WEBP",
    SupportedFileType.TIFF: "TIFF",
}

_COLOR_SPACE_BY_MODE = {
    "1": "b-w",
    "L": "b-w",
    "LA": "b-w",
    "P": "srgb",
    "PA": "srgb",
    "RGB": "srgb",
    "RGBA": "srgb",
    "CMYK": "cmyk",
    "YCbCr": "ycbcr",
    "LAB": "lab",
    "I": "b-w",
    "I;16": "b-w",
}

_METADATA_KEYS = ("exif", "icc_profile", "xmp", "XML:com.adobe.xmp")


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    if _has_alpha(img):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode in ("RGB", "L", "CMYK"):
        return img
    return img.convert("RGB")


class ImageProcessor:
    """Re-encodes validated uploads into the format we keep on disk."""

    def __init__(self, config: ImageProcessingConfig) -> None:
        self._config = config
        register_codecs()

    @property
    def config(self) -> ImageProcessingConfig:
        return self._config

    async def process(self, data: bytes, mime_type: str) -> Result[ProcessedImage, UploadFailure]:
        try:
            processed = await asyncio.to_thread(self.process_sync, data, mime_type)
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            logger.warning("Image processing failed for %s: %s", mime_type, e)
            return Err(UploadFailure(
                code=FileServiceErrorCode.PROCESSING_FAILED,
                message=PROCESSING_FAILED_MESSAGE,
                details={"reason": str(e), "mime_type": str(mime_type)},
                upload_details=UploadDetails(
                    stage=UploadStage.PROCESSING,
                    retryable=False,
                    bytes_processed=len(data),
                ),
            ))
        return Ok(processed)

    def process_sync(self, data: bytes, mime_type: str) -> ProcessedImage:
        """Raises OSError/ValueError when the bytes cannot be re-encoded."""
        output_type = OUTPUT_TYPE_BY_INPUT[SupportedFileType(mime_type)]
        max_dims = self._config.max_dimensions

        with Image.open(BytesIO(data)) as src:
            orientation = src.getexif().get(ExifTags.Base.Orientation)
            # returns an upright copy with the orientation tag removed
            img = ImageOps.exif_transpose(src)

        img.thumbnail((max_dims.width, max_dims.height), Image.Resampling.LANCZOS)

        if not self._config.preserve_metadata:
            for key in _METADATA_KEYS:
                img.info.pop(key, None)

        encoded = self._encode(img, output_type)

        with Image.open(BytesIO(encoded)) as result:
            width, height = result.size
            return ProcessedImage(
                data=encoded,
                width=width,
                height=height,
                format=(result.format or _PIL_FORMAT_BY_TYPE[output_type]).lower(),
                mime_type=output_type,
                extension=extension_for(output_type),
                color_space=_COLOR_SPACE_BY_MODE.get(result.mode, result.mode.lower()),
                has_alpha=_has_alpha(result),
                orientation=int(orientation) if orientation else None,
            )

    def _encode(self, img: Image.Image, output_type: SupportedFileType) -> bytes:
        quality = self._config.quality
        optimize = self._config.enable_optimization
        icc_profile = img.info.get("icc_profile")
        exif = img.info.get("exif")
        options: dict[str, Any] = {}

        if output_type is SupportedFileType.JPEG:
            img = _flatten_to_rgb(img)
            options.update(quality=quality.jpeg, optimize=optimize, progressive=optimize)
        elif output_type is SupportedFileType.PNG:
            if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"):
                img = img.convert("RGBA" if _has_alpha(img) else "RGB")
            options.update(compress_level=quality.png)
        elif output_type is SupportedFileType.WEBP:
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if _has_alpha(img) else "RGB")
            options.update(quality=quality.webp, method=6 if optimize else 4)
        elif output_type is SupportedFileType.TIFF:
            options.update(compression="tiff_lzw")
        else:
            raise ValueError(f"No encoder for {output_type}")

        if self._config.preserve_metadata:
            if icc_profile:
                options["icc_profile"] = icc_profile
            if exif and output_type is not SupportedFileType.TIFF:
                options["exif"] = exif

        buffer = BytesIO()
        img.save(buffer, format=_PIL_FORMAT_BY_TYPE[output_type], **options)
        return buffer.getvalue()
