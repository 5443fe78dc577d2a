"""
FastAPI Dependencies for the Composition Service

Provides dependency injection for:
- Composition handler (built once per app, shared by all requests)
- Template store (loaded once at startup, read-only)

Assembly of the pipeline from settings lives here so tests can build the
same handler with injected collaborators.
"""

from typing import Optional

from fastapi import HTTPException, Request

from src.core.config import Settings
from src.pipeline.compositor import Compositor
from src.pipeline.decoder import ImageDecoder
from src.pipeline.encoder import ImageEncoder
from src.pipeline.fetcher import RemoteFetcher
from src.pipeline.format_policy import CdnUrlPolicy, ContentTypePolicy
from src.pipeline.handler import CompositionHandler, OriginPolicy
from src.pipeline.templates import TemplateStore


def build_fetcher(settings: Settings) -> RemoteFetcher:
    """Fetcher with the configured payload cap and timeout."""
    return RemoteFetcher(
        max_bytes=settings.MAX_FETCH_BYTES,
        timeout=settings.FETCH_TIMEOUT_SECONDS,
    )


def build_handler(
    settings: Settings,
    templates: TemplateStore,
    fetcher: RemoteFetcher,
    origin_policy: Optional[OriginPolicy] = None
) -> CompositionHandler:
    """Wire the pipeline stages together."""
    return CompositionHandler(
        fetcher=fetcher,
        decoder=ImageDecoder(ContentTypePolicy(), max_pixels=settings.MAX_IMAGE_PIXELS),
        compositor=Compositor(templates),
        encoder=ImageEncoder(),
        origin_policy=origin_policy or OriginPolicy.from_settings(settings),
        url_policy=CdnUrlPolicy(
            fetch_as_png=settings.FETCH_AS_PNG,
            allowed_hosts=settings.allowed_image_hosts,
        ),
    )


def get_composition_handler(request: Request) -> CompositionHandler:
    """Handler stored on the app; 503 until templates are loaded."""
    handler = getattr(request.app.state, "handler", None)
    if handler is None:
        raise HTTPException(status_code=503, detail="templates are not loaded yet")
    return handler
