"""
Remote Fetcher

Downloads avatar bytes from the CDN with a single GET. The declared
Content-Type is passed through untouched for the decoder's format policy.
The payload is capped so a hostile or broken upstream cannot exhaust memory.
"""

from typing import Optional

import httpx

from src.core.exceptions import (
    FetchHttpStatusError,
    FetchUnreachableError,
    InvalidImageUrlError,
    PayloadTooLargeError,
)
from src.core.logging import get_logger
from src.core.metrics import record_upstream_fetch
from src.pipeline.models import RawImageBytes

logger = get_logger(__name__)

DEFAULT_MAX_BYTES = 8 * 1024 * 1024
USER_AGENT = "avatar-banner-service/1.0"


class RemoteFetcher:
    """
    Fetch avatar images over HTTP.

    No retries: a failed fetch fails the request. The httpx client is shared
    across requests for connection pooling and closed by ``aclose``.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
        timeout: float = 10.0
    ):
        self.max_bytes = max_bytes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def fetch(self, url: str) -> RawImageBytes:
        """
        GET ``url`` and return its body with the declared content type.

        Raises:
            FetchUnreachableError: network failure or timeout
            FetchHttpStatusError: non-2xx response
            PayloadTooLargeError: body larger than ``max_bytes``
        """
        try:
            async with self._client.stream("GET", url) as response:
                if not response.is_success:
                    record_upstream_fetch("error", response.status_code)
                    raise FetchHttpStatusError(response.status_code)

                declared_length = response.headers.get("content-length")
                if declared_length and declared_length.isdigit() and int(declared_length) > self.max_bytes:
                    record_upstream_fetch("too_large", response.status_code)
                    raise PayloadTooLargeError(self.max_bytes)

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        record_upstream_fetch("too_large", response.status_code)
                        raise PayloadTooLargeError(self.max_bytes)

                content_type = response.headers.get("content-type")
                status_code = response.status_code

        except httpx.TimeoutException as e:
            record_upstream_fetch("timeout")
            raise FetchUnreachableError(f"timed out fetching image: {type(e).__name__}")

        except httpx.HTTPError as e:
            record_upstream_fetch("unreachable")
            raise FetchUnreachableError(f"could not fetch image: {e}")

        except httpx.InvalidURL as e:
            raise InvalidImageUrlError(f"malformed image url: {e}")

        record_upstream_fetch("success", status_code, len(body))
        logger.debug(
            "image_fetched",
            size_bytes=len(body),
            content_type=content_type,
            http_status=status_code
        )
        return RawImageBytes(data=bytes(body), content_type=content_type, url=url)

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
