"""
Canonical re-encoding of media for reproducible content hashes.

Images are decoded at their natural size, flattened onto opaque white and
written as 8-bit RGB PNG with fixed encoder settings and no ancillary chunks,
so any two encodings of the same pixels produce the same bytes. Anything that
cannot be decoded falls back to the original bytes, flagged.
"""

import io
import structlog
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from truthchain.models.attestation import MediaType

logger = structlog.get_logger()

TARGET_FORMAT = "PNG"
TARGET_MODE = "RGB"
BACKGROUND = (255, 255, 255, 255)
PNG_COMPRESS_LEVEL = 6


@dataclass(frozen=True)
class NormalizedMedia:
    """Output of normalization, with enough context to explain the hash."""
    data: bytes
    normalized: bool
    size: int
    width: Optional[int] = None
    height: Optional[int] = None
    source_format: Optional[str] = None
    fallback_reason: Optional[str] = None


class ContentNormalizer:
    """Canonicalizes media bytes; images only, everything else passes through."""

    def __init__(self, compress_level: int = PNG_COMPRESS_LEVEL):
        self.compress_level = compress_level

    def normalize(self, data: bytes, media_type: MediaType = MediaType.PHOTO) -> NormalizedMedia:
        if media_type != MediaType.PHOTO:
            logger.debug("Skipping normalization for non-image media", media_type=media_type.value, size=len(data))
            return NormalizedMedia(data=data, normalized=False, size=len(data))

        try:
            with Image.open(io.BytesIO(data)) as image:
                source_format = image.format
                width, height = image.size
                if width <= 0 or height <= 0:
                    raise ValueError(f"Invalid dimensions: {width}x{height}")

                canonical = self._flatten(image)

            buffer = io.BytesIO()
            canonical.save(buffer, format=TARGET_FORMAT, optimize=False, compress_level=self.compress_level)
            normalized = buffer.getvalue()

        except Exception as e:
            logger.warning("Image normalization failed, using original bytes",
                           size=len(data), error=str(e))
            return NormalizedMedia(
                data=data,
                normalized=False,
                size=len(data),
                fallback_reason=f"{type(e).__name__}: {e}",
            )

        logger.debug("Normalized image",
                     source_format=source_format,
                     width=width,
                     height=height,
                     original_size=len(data),
                     normalized_size=len(normalized))

        return NormalizedMedia(
            data=normalized,
            normalized=True,
            size=len(data),
            width=width,
            height=height,
            source_format=source_format,
        )

    def _flatten(self, image: Image.Image) -> Image.Image:
        """Composite onto opaque white and drop alpha."""
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, BACKGROUND)
        background.alpha_composite(rgba)
        return background.convert(TARGET_MODE)
