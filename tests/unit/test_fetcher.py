import httpx
import pytest

from src.core.exceptions import (
    FetchHttpStatusError,
    FetchUnreachableError,
    PayloadTooLargeError,
)
from src.pipeline.fetcher import RemoteFetcher

from tests.helpers import AVATAR_URL, CdnStub, make_image_bytes


def fetcher_for(handler, max_bytes=1024) -> RemoteFetcher:
    return RemoteFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), max_bytes=max_bytes)


@pytest.mark.asyncio
async def test_fetch_returns_body_and_declared_type():
    # Arrange
    cdn = CdnStub()
    body = make_image_bytes(size=(4, 4))
    cdn.serve(AVATAR_URL, body, content_type="image/png; charset=binary")
    fetcher = fetcher_for(cdn)

    # Act
    raw = await fetcher.fetch(AVATAR_URL)

    # Assert
    assert raw.data == body
    assert raw.content_type == "image/png; charset=binary"
    assert raw.url == AVATAR_URL
    assert len(cdn.calls) == 1
    assert cdn.calls[0].method == "GET"


@pytest.mark.asyncio
async def test_missing_content_type_passed_through_as_none():
    cdn = CdnStub()
    cdn.serve(AVATAR_URL, b"abc", content_type="")

    raw = await fetcher_for(cdn).fetch(AVATAR_URL)

    assert raw.content_type is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [301, 404, 500, 503])
async def test_non_success_status(status_code):
    cdn = CdnStub()
    cdn.serve(AVATAR_URL, b"nope", content_type="text/plain", status_code=status_code)

    with pytest.raises(FetchHttpStatusError) as exc_info:
        await fetcher_for(cdn).fetch(AVATAR_URL)

    assert exc_info.value.code == 502
    assert exc_info.value.details["http_status"] == status_code


@pytest.mark.asyncio
async def test_declared_length_over_cap():
    cdn = CdnStub()
    cdn.serve(AVATAR_URL, b"x" * 2048)

    with pytest.raises(PayloadTooLargeError) as exc_info:
        await fetcher_for(cdn, max_bytes=1024).fetch(AVATAR_URL)
    assert exc_info.value.code == 413


@pytest.mark.asyncio
async def test_streamed_body_over_cap_without_length():
    async def chunks():
        for _ in range(8):
            yield b"x" * 256

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=chunks(), headers={"content-type": "image/png"})

    with pytest.raises(PayloadTooLargeError):
        await fetcher_for(handler, max_bytes=1024).fetch(AVATAR_URL)


@pytest.mark.asyncio
async def test_body_exactly_at_cap_is_accepted():
    cdn = CdnStub()
    cdn.serve(AVATAR_URL, b"x" * 1024)

    raw = await fetcher_for(cdn, max_bytes=1024).fetch(AVATAR_URL)
    assert len(raw.data) == 1024


@pytest.mark.asyncio
async def test_connection_error_is_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchUnreachableError) as exc_info:
        await fetcher_for(handler).fetch(AVATAR_URL)
    assert exc_info.value.code == 502


@pytest.mark.asyncio
async def test_timeout_is_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchUnreachableError, match="timed out"):
        await fetcher_for(handler).fetch(AVATAR_URL)


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(CdnStub()))
    fetcher = RemoteFetcher(client=client)

    await fetcher.aclose()

    assert not client.is_closed
    await client.aclose()
