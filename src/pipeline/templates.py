"""
Banner Templates

Template kinds form an open registry: each kind names its asset file and the
square region the avatar is placed in. Assets are loaded once at startup
into a TemplateStore and shared read-only by every request.

Asset layout::

    <template_dir>/250/<file>     small banners
    <template_dir>/1000/<file>    large banners

Placement geometry is given for the large banners and scaled down for the
small ones.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from src.core.exceptions import TemplateLoadError, UnknownTemplateError
from src.core.logging import get_logger
from src.pipeline.models import PixelBuffer, TemplateScale

logger = get_logger(__name__)


class Placement(BaseModel):
    """Square avatar region within a template, in template pixels."""
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    size: int = Field(..., gt=0)


class TemplateSpec(BaseModel):
    """Static description of a template kind."""
    model_config = ConfigDict(frozen=True)

    kind: str
    filename: str
    avatar_x: int
    avatar_y: int
    avatar_size: int = Field(..., gt=0)
    round_avatar: bool = True

    def placement(self, scale: TemplateScale) -> Placement:
        """Avatar region for the given asset scale."""
        def scaled(value: int) -> int:
            return value * scale.value // TemplateScale.LARGE.value

        return Placement(
            x=scaled(self.avatar_x),
            y=scaled(self.avatar_y),
            size=max(1, scaled(self.avatar_size)),
        )


class TemplateRegistry:
    """Mutable set of known template kinds, keyed by kind name."""

    def __init__(self, specs: Iterable[TemplateSpec] = ()):
        self._specs: Dict[str, TemplateSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: TemplateSpec):
        self._specs[spec.kind] = spec

    def get(self, kind: str) -> TemplateSpec:
        try:
            return self._specs[kind]
        except KeyError:
            raise UnknownTemplateError(kind)

    def __contains__(self, kind: str) -> bool:
        return kind in self._specs

    @property
    def kinds(self) -> List[str]:
        return list(self._specs)

    def specs(self) -> List[TemplateSpec]:
        return list(self._specs.values())


def default_registry() -> TemplateRegistry:
    """The enter/exit banners."""
    return TemplateRegistry([
        TemplateSpec(kind="enter", filename="enter.png", avatar_x=35, avatar_y=397, avatar_size=603),
        TemplateSpec(kind="exit", filename="exit.png", avatar_x=35, avatar_y=397, avatar_size=603),
    ])


class Template(BaseModel):
    """A loaded template asset. Never mutated after loading."""
    model_config = ConfigDict(frozen=True)

    spec: TemplateSpec
    scale: TemplateScale
    pixels: PixelBuffer

    @property
    def kind(self) -> str:
        return self.spec.kind

    @property
    def placement(self) -> Placement:
        return self.spec.placement(self.scale)


class TemplateStore:
    """Read-only lookup of loaded templates by (kind, scale)."""

    def __init__(self, registry: TemplateRegistry, templates: Dict[Tuple[str, TemplateScale], Template]):
        self.registry = registry
        self._templates = dict(templates)

    @classmethod
    def load(
        cls,
        template_dir: Path,
        registry: Optional[TemplateRegistry] = None,
        scales: Iterable[TemplateScale] = tuple(TemplateScale)
    ) -> "TemplateStore":
        """
        Load every registered kind at every scale from ``template_dir``.

        Raises:
            TemplateLoadError: an asset is missing or unreadable
        """
        registry = registry or default_registry()
        template_dir = Path(template_dir)
        templates: Dict[Tuple[str, TemplateScale], Template] = {}

        for spec in registry.specs():
            for scale in scales:
                path = template_dir / str(scale.value) / spec.filename
                try:
                    with Image.open(path) as image:
                        pixels = PixelBuffer.from_image(image.convert("RGBA"))
                except (OSError, ValueError) as e:
                    raise TemplateLoadError(
                        f"could not load template {path}: {e}",
                        details={"kind": spec.kind, "scale": scale.value}
                    ) from e

                templates[(spec.kind, scale)] = Template(spec=spec, scale=scale, pixels=pixels)

        logger.info(
            "templates_loaded",
            kinds=registry.kinds,
            scales=[scale.value for scale in scales],
            template_dir=str(template_dir)
        )
        return cls(registry, templates)

    def get(self, kind: str, scale: TemplateScale) -> Template:
        spec = self.registry.get(kind)
        try:
            return self._templates[(spec.kind, scale)]
        except KeyError:
            raise UnknownTemplateError(kind, details={"scale": scale.value})

    @property
    def kinds(self) -> List[str]:
        return self.registry.kinds

    def __len__(self) -> int:
        return len(self._templates)
