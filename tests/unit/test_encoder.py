import io

import pytest
from PIL import Image
from pydantic import ValidationError

from src.pipeline.decoder import ImageDecoder
from src.pipeline.encoder import ImageEncoder
from src.pipeline.models import CompositedImage, OutputFormat, PixelBuffer, RawImageBytes


def composited(color=(12, 34, 56, 255), size=(20, 10)) -> CompositedImage:
    image = Image.new("RGBA", size, color)
    image.putpixel((0, 0), (255, 255, 255, 0))
    return CompositedImage(template_kind="enter", pixels=PixelBuffer.from_image(image))


def test_png_is_lossless():
    source = composited()

    encoded = ImageEncoder().encode(source)
    decoded = ImageDecoder().decode(RawImageBytes(data=encoded.data, content_type=encoded.content_type))

    assert encoded.format is OutputFormat.PNG
    assert encoded.content_type == "image/png"
    assert decoded.data == source.pixels.data


@pytest.mark.parametrize("output_format,content_type", [
    (OutputFormat.JPEG, "image/jpeg"),
    (OutputFormat.WEBP, "image/webp"),
    (OutputFormat.GIF, "image/gif"),
])
def test_other_formats(output_format, content_type):
    encoded = ImageEncoder().encode(composited(), output_format)

    assert encoded.content_type == content_type
    with Image.open(io.BytesIO(encoded.data)) as image:
        assert image.format == output_format.value
        assert image.size == (20, 10)


def test_jpeg_flattens_transparency_on_white():
    encoded = ImageEncoder().encode(composited(color=(0, 0, 0, 0)), OutputFormat.JPEG)

    with Image.open(io.BytesIO(encoded.data)) as image:
        assert image.mode == "RGB"
        assert all(channel > 240 for channel in image.getpixel((10, 5)))


def test_pixel_buffer_rejects_wrong_sample_count():
    with pytest.raises(ValidationError):
        PixelBuffer(width=2, height=2, mode="RGBA", data=b"\x00" * 15)


def test_pixel_buffer_rejects_empty_dimensions():
    with pytest.raises(ValidationError):
        PixelBuffer(width=0, height=2, data=b"")
