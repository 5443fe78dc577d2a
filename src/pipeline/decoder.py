"""
Image Decoder

Turns fetched bytes into an RGBA PixelBuffer. The format comes from the
ContentTypePolicy; dimensions are checked from the header before the pixel
data is decompressed.
"""

import io
from typing import Optional

from PIL import Image

from src.core.exceptions import CorruptDataError, DimensionsExceedLimitError
from src.pipeline.format_policy import ContentTypePolicy
from src.pipeline.models import PixelBuffer, RawImageBytes

DEFAULT_MAX_PIXELS = 25_000_000


class ImageDecoder:
    """Decode PNG, JPEG, GIF (first frame) and WEBP payloads."""

    def __init__(
        self,
        policy: Optional[ContentTypePolicy] = None,
        max_pixels: int = DEFAULT_MAX_PIXELS
    ):
        self.policy = policy or ContentTypePolicy()
        self.max_pixels = max_pixels

    def decode(self, raw: RawImageBytes) -> PixelBuffer:
        """
        Decode ``raw`` into an RGBA buffer.

        Raises:
            UnsupportedFormatError: format not accepted by the policy
            DimensionsExceedLimitError: more pixels than ``max_pixels``
            CorruptDataError: bytes are not a valid image of that format
        """
        image_format = self.policy.resolve(raw.content_type, raw.data)

        try:
            # Lazy: only the header is parsed here
            image = Image.open(io.BytesIO(raw.data), formats=[image_format])
        except Image.DecompressionBombError as e:
            raise DimensionsExceedLimitError(
                f"image rejected as decompression bomb: {e}",
                details={"limit_pixels": self.max_pixels}
            ) from e
        except (OSError, SyntaxError, ValueError, EOFError) as e:
            raise CorruptDataError(
                f"could not decode {image_format} data",
                details={"format": image_format}
            ) from e

        with image:
            width, height = image.size
            if width * height > self.max_pixels:
                raise DimensionsExceedLimitError(
                    f"image has {width * height} pixels, exceeds limit of {self.max_pixels}",
                    details={"width": width, "height": height, "limit_pixels": self.max_pixels}
                )

            try:
                # Animated GIF/WEBP: frame 0 only
                image.seek(0)
                image.load()
                rgba = image.convert("RGBA")
            except (OSError, SyntaxError, ValueError, EOFError) as e:
                raise CorruptDataError(
                    f"truncated or malformed {image_format} data",
                    details={"format": image_format}
                ) from e

        return PixelBuffer.from_image(rgba)
