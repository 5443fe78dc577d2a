"""
Compositor

Places the avatar onto its template: optional mirror, force-fit to the
template's square region with bilinear resampling, circular mask, crop to
the template bounds, then source-over blend. Pure function of its inputs.
"""

from typing import Tuple

from PIL import Image, ImageChops, ImageDraw, ImageOps

from src.core.exceptions import InternalPipelineError
from src.pipeline.models import CompositedImage, ImageRequest, PixelBuffer
from src.pipeline.templates import Placement, TemplateStore

RESAMPLE = Image.Resampling.BILINEAR


def round_mask(image: Image.Image) -> Image.Image:
    """Clear every pixel outside the circle inscribed in the image."""
    mask = Image.new("L", image.size, 0)
    ImageDraw.Draw(mask).ellipse((0, 0, image.width - 1, image.height - 1), fill=255)

    rounded = image.copy()
    rounded.putalpha(ImageChops.multiply(image.getchannel("A"), mask))
    return rounded


def clip_to_bounds(
    overlay: Image.Image,
    x: int,
    y: int,
    max_width: int,
    max_height: int
) -> Tuple[Image.Image, int, int]:
    """
    Crop ``overlay`` so that placing it at (x, y) stays inside the canvas.

    Returns the cropped overlay and its non-negative position. The overlay
    may end up empty when it lies entirely outside the canvas.
    """
    left = max(0, -x)
    top = max(0, -y)
    right = min(overlay.width, max_width - x)
    bottom = min(overlay.height, max_height - y)

    right = max(left, right)
    bottom = max(top, bottom)

    if (left, top, right, bottom) != (0, 0, overlay.width, overlay.height):
        overlay = overlay.crop((left, top, right, bottom))
    return overlay, max(0, x), max(0, y)


class Compositor:
    """Overlay avatars onto pre-loaded templates."""

    def __init__(self, templates: TemplateStore):
        self.templates = templates

    def prepare_avatar(self, avatar: PixelBuffer, placement: Placement, flip: bool, rounded: bool) -> Image.Image:
        image = avatar.to_image()
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        if flip:
            image = ImageOps.mirror(image)

        image = image.resize((placement.size, placement.size), RESAMPLE)
        if rounded:
            image = round_mask(image)
        return image

    def compose(self, avatar: PixelBuffer, request: ImageRequest) -> CompositedImage:
        """
        Blend ``avatar`` over the template selected by ``request``.

        Raises:
            UnknownTemplateError: no template for the requested kind/scale
        """
        template = self.templates.get(request.template_kind, request.scale)
        placement = template.placement

        overlay = self.prepare_avatar(avatar, placement, request.flip, template.spec.round_avatar)

        # Fresh canvas per request; the shared template buffer is read-only
        canvas = template.pixels.to_image()
        overlay, x, y = clip_to_bounds(overlay, placement.x, placement.y, canvas.width, canvas.height)
        if overlay.width and overlay.height:
            canvas.alpha_composite(overlay, dest=(x, y))

        if canvas.size != template.pixels.size:
            raise InternalPipelineError(
                "composited image does not match template dimensions",
                details={"canvas": canvas.size, "template": template.pixels.size}
            )

        return CompositedImage(
            template_kind=template.kind,
            pixels=PixelBuffer.from_image(canvas),
        )
