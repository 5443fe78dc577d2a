#!/usr/bin/env python3
"""
Template Setup Script - Render Placeholder Banner Assets

Writes one PNG per registered template kind at both asset scales:

    <output>/250/<kind>.png
    <output>/1000/<kind>.png

The real banner artwork is kept outside this repository; these placeholders
let the service start and produce recognisable output in development.

    python scripts/generate_templates.py --output assets/images
"""

import sys
import logging
import argparse
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pipeline.models import TemplateScale  # noqa: E402
from src.pipeline.templates import TemplateSpec, default_registry  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PALETTE = {
    "enter": ((34, 139, 84, 255), (255, 255, 255, 255)),
    "exit": ((178, 34, 52, 255), (255, 255, 255, 255)),
}
DEFAULT_COLORS = ((60, 60, 60, 255), (255, 255, 255, 255))


def render_template(spec: TemplateSpec, scale: TemplateScale) -> Image.Image:
    """Flat banner with the kind's name and an outline of the avatar slot."""
    size = scale.value
    background, foreground = PALETTE.get(spec.kind, DEFAULT_COLORS)

    image = Image.new("RGBA", (size, size), background)
    draw = ImageDraw.Draw(image)

    placement = spec.placement(scale)
    ring = max(1, size // 200)
    draw.ellipse(
        (
            placement.x - ring,
            placement.y - ring,
            placement.x + placement.size + ring,
            placement.y + placement.size + ring,
        ),
        outline=foreground,
        width=ring,
    )

    try:
        font = ImageFont.load_default(size=size // 8)
    except TypeError:
        # Pillow < 10.1 has no sized default font
        font = ImageFont.load_default()
    draw.text((size // 20, size // 20), spec.kind.upper(), fill=foreground, font=font)
    return image


def generate(output: Path, overwrite: bool = False) -> int:
    written = 0
    for spec in default_registry().specs():
        for scale in TemplateScale:
            path = output / str(scale.value) / spec.filename
            if path.exists() and not overwrite:
                logger.info(f"Keeping existing {path}")
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            render_template(spec, scale).save(path, format="PNG")
            logger.info(f"Wrote {path}")
            written += 1
    return written


def main():
    parser = argparse.ArgumentParser(
        description="Render placeholder banner templates"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("assets/images"),
        help="Template directory (default: assets/images)"
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace existing assets"
    )
    args = parser.parse_args()

    written = generate(args.output, overwrite=args.overwrite)
    logger.info(f"Done, {written} template(s) written")


if __name__ == "__main__":
    main()
