import pytest
from PIL import Image

from src.core.exceptions import UnknownTemplateError
from src.pipeline.compositor import Compositor, clip_to_bounds, round_mask
from src.pipeline.models import ImageRequest, PixelBuffer, TemplateScale
from src.pipeline.templates import Template, TemplateRegistry, TemplateSpec, TemplateStore

from tests.helpers import AVATAR_URL, TEMPLATE_COLORS

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)


def avatar(size=(64, 64), color=RED) -> PixelBuffer:
    return PixelBuffer.from_image(Image.new("RGBA", size, color))


def request(kind="enter", large=False, flip=False) -> ImageRequest:
    return ImageRequest(template_kind=kind, source_url=AVATAR_URL, large=large, flip=flip)


@pytest.mark.parametrize("size", [(1, 1), (64, 64), (300, 120), (2048, 2048)])
def test_output_matches_template_dimensions(template_store, size):
    compositor = Compositor(template_store)

    result = compositor.compose(avatar(size=size), request())

    assert result.pixels.size == (250, 250)
    assert result.template_kind == "enter"


def test_large_uses_large_template(template_store):
    result = Compositor(template_store).compose(avatar(), request(large=True))
    assert result.pixels.size == (1000, 1000)


def test_avatar_lands_in_placement_region(template_store):
    result = Compositor(template_store).compose(avatar(), request("exit")).pixels.to_image()

    # Small placement is (8, 99) with a 150px slot
    assert result.getpixel((83, 174)) == RED
    assert result.getpixel((0, 0)) == TEMPLATE_COLORS["exit"]
    assert result.getpixel((249, 249)) == TEMPLATE_COLORS["exit"]


def test_round_mask_leaves_slot_corners_untouched(template_store):
    result = Compositor(template_store).compose(avatar(), request()).pixels.to_image()

    assert result.getpixel((8, 99)) == TEMPLATE_COLORS["enter"]
    assert result.getpixel((157, 248)) == TEMPLATE_COLORS["enter"]


def test_flip_mirrors_avatar(template_store):
    image = Image.new("RGBA", (64, 64), RED)
    image.paste(GREEN, (32, 0, 64, 64))
    compositor = Compositor(template_store)

    plain = compositor.compose(PixelBuffer.from_image(image), request()).pixels.to_image()
    flipped = compositor.compose(PixelBuffer.from_image(image), request(flip=True)).pixels.to_image()

    assert plain.getpixel((48, 174)) == RED
    assert flipped.getpixel((48, 174)) == GREEN


def test_compose_is_deterministic(template_store):
    compositor = Compositor(template_store)
    buffer = avatar(size=(37, 91), color=(10, 200, 30, 128))

    first = compositor.compose(buffer, request())
    second = compositor.compose(buffer, request())

    assert first.pixels.data == second.pixels.data


def test_shared_template_not_mutated(template_store):
    template = template_store.get("enter", TemplateScale.SMALL)
    before = template.pixels.data

    Compositor(template_store).compose(avatar(), request())

    assert template_store.get("enter", TemplateScale.SMALL).pixels.data == before


def test_unknown_kind(template_store):
    with pytest.raises(UnknownTemplateError) as exc_info:
        Compositor(template_store).compose(avatar(), request("welcome"))
    assert exc_info.value.code == 404


def test_overhanging_placement_is_clipped():
    spec = TemplateSpec(
        kind="corner", filename="corner.png",
        avatar_x=900, avatar_y=900, avatar_size=200, round_avatar=False
    )
    background = PixelBuffer.from_image(Image.new("RGBA", (1000, 1000), (0, 0, 0, 255)))
    store = TemplateStore(
        TemplateRegistry([spec]),
        {("corner", TemplateScale.LARGE): Template(spec=spec, scale=TemplateScale.LARGE, pixels=background)},
    )

    result = Compositor(store).compose(avatar(), request("corner", large=True)).pixels.to_image()

    assert result.size == (1000, 1000)
    assert result.getpixel((999, 999)) == RED
    assert result.getpixel((899, 899)) == (0, 0, 0, 255)


def test_clip_to_bounds_crops_negative_and_overflow():
    overlay = Image.new("RGBA", (10, 10), RED)

    cropped, x, y = clip_to_bounds(overlay, -3, 5, 20, 12)

    assert cropped.size == (7, 7)
    assert (x, y) == (0, 5)


def test_clip_to_bounds_fully_outside_is_empty():
    cropped, _, _ = clip_to_bounds(Image.new("RGBA", (10, 10)), 50, 50, 20, 20)
    assert cropped.width == 0 or cropped.height == 0


def test_round_mask_clears_corners_only():
    rounded = round_mask(Image.new("RGBA", (40, 40), RED))

    assert rounded.getpixel((0, 0))[3] == 0
    assert rounded.getpixel((20, 20)) == RED
