import io
from typing import Dict, List, Tuple

import httpx
from PIL import Image

ALLOWED_ORIGIN = "https://allowed.example"
EVIL_ORIGIN = "https://evil.example"
AVATAR_URL = "https://cdn.example/avatars/123.png"

TEMPLATE_COLORS = {
    "enter": (20, 40, 200, 255),
    "exit": (200, 40, 20, 255),
}


def make_image_bytes(
    size: Tuple[int, int] = (64, 64),
    color=(255, 0, 0, 255),
    fmt: str = "PNG",
    mode: str = "RGBA"
) -> bytes:
    image = Image.new(mode, size, color if mode == "RGBA" else color[:3])
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class CdnStub:
    """MockTransport handler that serves canned responses and records calls."""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes, str]] = {}
        self.calls: List[httpx.Request] = []

    def serve(self, url: str, content: bytes, content_type: str = "image/png", status_code: int = 200):
        self.routes[url] = (status_code, content, content_type)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, content=b"not found", headers={"content-type": "text/plain"})
        status_code, content, content_type = route
        headers = {"content-type": content_type} if content_type else {}
        return httpx.Response(status_code, content=content, headers=headers)
