"""
Pipeline Value Types

Immutable values handed from stage to stage. Each stage consumes its input
and returns a new value, so no buffer is shared between stages or requests.
"""

from enum import Enum
from typing import Optional

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, model_validator


class RequestState(str, Enum):
    """Request handler states."""
    RECEIVED = "received"
    FETCHING = "fetching"
    DECODING = "decoding"
    COMPOSITING = "compositing"
    ENCODING = "encoding"
    RESPONDED = "responded"
    FAILED = "failed"


class OutputFormat(str, Enum):
    """Encodable output formats."""
    PNG = "PNG"
    JPEG = "JPEG"
    WEBP = "WEBP"
    GIF = "GIF"

    @property
    def content_type(self) -> str:
        return f"image/{self.value.lower()}"


class TemplateScale(int, Enum):
    """Template asset sizes, named by their directory."""
    SMALL = 250
    LARGE = 1000


MODE_CHANNELS = {"RGBA": 4, "RGB": 3, "LA": 2, "L": 1}


class ImageRequest(BaseModel):
    """A single composition request."""
    model_config = ConfigDict(frozen=True)

    template_kind: str
    source_url: str
    large: bool = False
    flip: bool = False

    @property
    def scale(self) -> TemplateScale:
        return TemplateScale.LARGE if self.large else TemplateScale.SMALL


class RawImageBytes(BaseModel):
    """Fetched payload plus the content type the server declared."""
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    content_type: Optional[str] = None
    url: str = ""


class PixelBuffer(BaseModel):
    """Row-major pixel samples with their dimensions."""
    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    mode: str = "RGBA"
    data: bytes = Field(repr=False)

    @model_validator(mode="after")
    def check_sample_count(self) -> "PixelBuffer":
        channels = MODE_CHANNELS.get(self.mode)
        if channels is None:
            raise ValueError(f"unsupported pixel mode {self.mode!r}")
        expected = self.width * self.height * channels
        if len(self.data) != expected:
            raise ValueError(
                f"{self.width}x{self.height} {self.mode} needs {expected} samples, got {len(self.data)}"
            )
        return self

    @property
    def channels(self) -> int:
        return MODE_CHANNELS[self.mode]

    @property
    def size(self):
        return (self.width, self.height)

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        if image.mode not in MODE_CHANNELS:
            image = image.convert("RGBA")
        return cls(width=image.width, height=image.height, mode=image.mode, data=image.tobytes())

    def to_image(self) -> Image.Image:
        return Image.frombytes(self.mode, self.size, self.data)


class CompositedImage(BaseModel):
    """Composition output; always the size of the template it was built on."""
    model_config = ConfigDict(frozen=True)

    template_kind: str
    pixels: PixelBuffer


class EncodedResponse(BaseModel):
    """Encoded image bytes ready to be written to the response."""
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    format: OutputFormat

    @property
    def content_type(self) -> str:
        return self.format.content_type
