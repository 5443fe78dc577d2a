"""
Encoder

Serializes a composited image. PNG is the default so the blended avatar
edges stay lossless; other formats are produced when the caller's avatar URL
asked for them.
"""

import io
from typing import Any, Dict

from PIL import Image

from src.core.exceptions import EncodeFailureError
from src.pipeline.models import CompositedImage, EncodedResponse, OutputFormat

SAVE_OPTIONS: Dict[OutputFormat, Dict[str, Any]] = {
    OutputFormat.PNG: {},
    OutputFormat.JPEG: {"quality": 90},
    OutputFormat.WEBP: {"lossless": True},
    OutputFormat.GIF: {},
}


def _flatten(image: Image.Image) -> Image.Image:
    """Drop alpha for formats without it, over a white background."""
    background = Image.new("RGB", image.size, (255, 255, 255))
    background.paste(image, mask=image.getchannel("A"))
    return background


class ImageEncoder:
    """Encode composited buffers into response bytes."""

    def encode(
        self,
        image: CompositedImage,
        output_format: OutputFormat = OutputFormat.PNG
    ) -> EncodedResponse:
        """
        Raises:
            EncodeFailureError: the buffer could not be serialized
        """
        try:
            canvas = image.pixels.to_image()
            if output_format is OutputFormat.JPEG and canvas.mode == "RGBA":
                canvas = _flatten(canvas)

            buffer = io.BytesIO()
            canvas.save(buffer, format=output_format.value, **SAVE_OPTIONS[output_format])
        except (OSError, ValueError, KeyError) as e:
            raise EncodeFailureError(
                f"could not encode {output_format.value}: {e}",
                details={"format": output_format.value}
            ) from e

        return EncodedResponse(data=buffer.getvalue(), format=output_format)
