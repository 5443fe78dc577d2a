import os
from typing import AsyncGenerator

# src.main builds its module-level app from the environment at import
os.environ.setdefault("NODE_ENV", "development")

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from PIL import Image  # noqa: E402

from src.core.config import Settings  # noqa: E402
from src.main import create_app  # noqa: E402
from src.pipeline.fetcher import RemoteFetcher  # noqa: E402
from src.pipeline.models import TemplateScale  # noqa: E402
from src.pipeline.templates import TemplateStore, default_registry  # noqa: E402

from tests.helpers import ALLOWED_ORIGIN, AVATAR_URL, TEMPLATE_COLORS, CdnStub, make_image_bytes  # noqa: E402


@pytest.fixture(scope="session")
def template_dir(tmp_path_factory):
    root = tmp_path_factory.mktemp("templates")
    for spec in default_registry().specs():
        for scale in TemplateScale:
            path = root / str(scale.value) / spec.filename
            path.parent.mkdir(parents=True, exist_ok=True)
            Image.new("RGBA", (scale.value, scale.value), TEMPLATE_COLORS[spec.kind]).save(path)
    return root


@pytest.fixture
def template_store(template_dir) -> TemplateStore:
    return TemplateStore.load(template_dir)


@pytest.fixture
def cdn() -> CdnStub:
    stub = CdnStub()
    stub.serve(AVATAR_URL, make_image_bytes())
    return stub


@pytest.fixture
async def fetcher(cdn) -> AsyncGenerator[RemoteFetcher, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(cdn))
    yield RemoteFetcher(client=client, max_bytes=1024 * 1024)
    await client.aclose()


@pytest.fixture
def settings(template_dir) -> Settings:
    return Settings(
        NODE_ENV="production",
        TEMPLATE_DIR=template_dir,
        CORS_ALLOWED_ORIGINS=ALLOWED_ORIGIN,
        CORS_ALLOWED_ORIGIN_SUFFIXES="",
        MAX_FETCH_BYTES=1024 * 1024,
    )


@pytest.fixture
async def client(settings, template_store, fetcher) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(settings=settings, templates=template_store, fetcher=fetcher)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
