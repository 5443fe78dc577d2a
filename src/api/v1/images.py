"""
Image Composition Endpoints

GET  /enter?image=<url>          - one route per registered template kind
GET  /images/{kind}?url=<url>    - generic route, any registered kind
POST /images/{kind}?url=<url>    - same, kept for existing clients

Options: large (1000px banner instead of 250px), flip (mirror the avatar).
"""

from typing import Iterable, Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from src.api.dependencies import get_composition_handler
from src.core.exceptions import InvalidImageUrlError
from src.core.logging import get_logger, request_id_var
from src.pipeline.handler import CompositionHandler, CompositionResult
from src.pipeline.models import ImageRequest

logger = get_logger(__name__)
router = APIRouter()


def image_response(result: CompositionResult) -> Response:
    """200 response carrying the encoded image and CORS headers."""
    headers = {
        "Vary": "Origin",
        "Time-Taken": str(result.elapsed_ms),
    }
    if result.allowed_origin:
        headers["Access-Control-Allow-Origin"] = result.allowed_origin
    request_id = request_id_var.get()
    if request_id:
        headers["X-Request-ID"] = request_id

    return Response(
        content=result.encoded.data,
        media_type=result.encoded.content_type,
        headers=headers,
    )


async def compose(
    request: Request,
    handler: CompositionHandler,
    kind: str,
    source_url: Optional[str],
    large: bool,
    flip: bool
) -> Response:
    if not source_url:
        raise InvalidImageUrlError("an image url is required", stage="received")

    image_request = ImageRequest(
        template_kind=kind,
        source_url=source_url,
        large=large,
        flip=flip,
    )
    logger.info("composition_request_received", template=kind, large=large, flip=flip)

    result = await handler.handle(
        image_request,
        origin=request.headers.get("origin"),
        is_disconnected=request.is_disconnected,
    )
    return image_response(result)


# =============================================================================
# Endpoints
# =============================================================================

@router.api_route("/images/{kind}", methods=["GET", "POST"])
async def create_image(
    kind: str,
    request: Request,
    url: Optional[str] = Query(None, description="Avatar URL on the CDN"),
    image: Optional[str] = Query(None, description="Alias of url"),
    large: bool = Query(False, description="Use the 1000px banner"),
    flip: bool = Query(False, description="Mirror the avatar horizontally"),
    handler: CompositionHandler = Depends(get_composition_handler)
):
    """Composite the avatar onto the ``kind`` banner."""
    return await compose(request, handler, kind, url or image, large, flip)


def _template_endpoint(kind: str):
    async def endpoint(
        request: Request,
        image: Optional[str] = Query(None, description="Avatar URL on the CDN"),
        large: bool = Query(False, description="Use the 1000px banner"),
        flip: bool = Query(False, description="Mirror the avatar horizontally"),
        handler: CompositionHandler = Depends(get_composition_handler)
    ):
        return await compose(request, handler, kind, image, large, flip)

    return endpoint


def build_template_router(kinds: Iterable[str]) -> APIRouter:
    """One ``GET /<kind>`` route per template kind."""
    template_router = APIRouter(tags=["images"])

    for kind in kinds:
        template_router.add_api_route(
            f"/{kind}",
            _template_endpoint(kind),
            methods=["GET"],
            name=f"compose_{kind}",
            summary=f"Composite an avatar onto the {kind} banner",
        )

    return template_router
