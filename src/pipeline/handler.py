"""
Composition Request Handler

Drives one request through the pipeline:

    RECEIVED -> FETCHING -> DECODING -> COMPOSITING -> ENCODING -> RESPONDED

Any stage error moves the run to FAILED with the stage recorded on the
exception; nothing partial is ever returned. The origin allow-list is
checked before any network activity.
"""

import asyncio
import re
import time
from typing import Awaitable, Callable, Iterable, List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel

from src.core.exceptions import (
    ImageServiceError,
    InternalPipelineError,
    OriginRejectedError,
    RequestCancelledError,
)
from src.core.logging import LogContext, get_logger
from src.core.metrics import record_composition, track_stage_latency
from src.pipeline.compositor import Compositor
from src.pipeline.decoder import ImageDecoder
from src.pipeline.encoder import ImageEncoder
from src.pipeline.fetcher import RemoteFetcher
from src.pipeline.format_policy import CdnUrlPolicy
from src.pipeline.models import EncodedResponse, ImageRequest, RequestState

logger = get_logger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]

STAGE_NAMES = {
    RequestState.RECEIVED: "received",
    RequestState.FETCHING: "fetch",
    RequestState.DECODING: "decode",
    RequestState.COMPOSITING: "composite",
    RequestState.ENCODING: "encode",
}


# =============================================================================
# Origin Policy
# =============================================================================

class OriginPolicy:
    """
    Allow-list of request origins.

    An origin is allowed when it matches one of ``origins`` exactly, or its
    host equals or is a subdomain of one of ``suffixes``. ``allow_all``
    accepts every request, including ones without an Origin header.
    """

    def __init__(
        self,
        origins: Iterable[str] = (),
        suffixes: Iterable[str] = (),
        allow_all: bool = False
    ):
        self.origins = frozenset(origin.rstrip("/").lower() for origin in origins)
        self.suffixes = tuple(suffix.lstrip(".").lower() for suffix in suffixes)
        self.allow_all = allow_all

    @classmethod
    def from_settings(cls, settings) -> "OriginPolicy":
        return cls(
            origins=settings.cors_allowed_origins,
            suffixes=settings.cors_allowed_origin_suffixes,
            allow_all=settings.CORS_ALLOW_ALL_IN_DEVELOPMENT and not settings.in_production,
        )

    def is_allowed(self, origin: Optional[str]) -> bool:
        if self.allow_all:
            return True
        if not origin:
            return False

        origin = origin.rstrip("/").lower()
        if origin in self.origins:
            return True

        try:
            parts = urlsplit(origin)
        except ValueError:
            return False
        host = parts.hostname or ""
        if parts.scheme not in ("http", "https") or not host:
            return False
        return any(host == suffix or host.endswith("." + suffix) for suffix in self.suffixes)

    def cors_origin_regex(self) -> Optional[str]:
        """
        Equivalent regex for CORSMiddleware.

        Allow-all matches any origin instead of using a wildcard, so the
        middleware echoes the caller's origin in Access-Control-Allow-Origin.
        """
        if self.allow_all:
            return r".*"
        if not self.suffixes:
            return None
        hosts = "|".join(re.escape(suffix) for suffix in self.suffixes)
        return rf"https?://([a-z0-9-]+\.)*({hosts})(:\d+)?"


# =============================================================================
# Handler
# =============================================================================

class PipelineRun:
    """State trace of a single request."""

    def __init__(self, request: ImageRequest):
        self.request = request
        self.state = RequestState.RECEIVED
        self.history: List[RequestState] = [RequestState.RECEIVED]
        self.failed_state: Optional[RequestState] = None
        self.error: Optional[ImageServiceError] = None

    def advance(self, state: RequestState):
        self.state = state
        self.history.append(state)

    def fail(self, error: ImageServiceError):
        self.failed_state = self.state
        self.error = error
        self.state = RequestState.FAILED
        self.history.append(RequestState.FAILED)


class CompositionResult(BaseModel):
    """Successful handler output."""

    encoded: EncodedResponse
    allowed_origin: Optional[str] = None
    elapsed_ms: int = 0
    states: List[RequestState] = []


class CompositionHandler:
    """Orchestrates fetch, decode, composite and encode for one request."""

    def __init__(
        self,
        fetcher: RemoteFetcher,
        decoder: ImageDecoder,
        compositor: Compositor,
        encoder: ImageEncoder,
        origin_policy: OriginPolicy,
        url_policy: Optional[CdnUrlPolicy] = None
    ):
        self.fetcher = fetcher
        self.decoder = decoder
        self.compositor = compositor
        self.encoder = encoder
        self.origin_policy = origin_policy
        self.url_policy = url_policy or CdnUrlPolicy()

    async def handle(
        self,
        request: ImageRequest,
        origin: Optional[str],
        is_disconnected: Optional[DisconnectCheck] = None
    ) -> CompositionResult:
        """
        Run the pipeline for ``request``.

        Raises:
            ImageServiceError: the subclass for the failing stage, with
                ``stage`` set; OriginRejectedError before any fetch.
        """
        run = PipelineRun(request)
        start = time.perf_counter()
        template_label = request.template_kind if request.template_kind in self.compositor.templates.registry else "unregistered"

        try:
            with LogContext(template=template_label):
                encoded = await self._run(run, origin, is_disconnected)
        except ImageServiceError as e:
            run.fail(e)
            record_composition(template_label, type(e).__name__)
            raise

        run.advance(RequestState.RESPONDED)
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        record_composition(template_label, "success")
        logger.info(
            "composition_completed",
            template=request.template_kind,
            format=encoded.format.value,
            output_size=len(encoded.data),
            duration_ms=elapsed_ms
        )
        return CompositionResult(
            encoded=encoded,
            allowed_origin=origin,
            elapsed_ms=elapsed_ms,
            states=run.history,
        )

    async def _run(
        self,
        run: PipelineRun,
        origin: Optional[str],
        is_disconnected: Optional[DisconnectCheck]
    ) -> EncodedResponse:
        request = run.request

        if not self.origin_policy.is_allowed(origin):
            logger.warning("origin_rejected", origin=origin)
            raise OriginRejectedError(origin, stage=STAGE_NAMES[RequestState.RECEIVED])

        try:
            source_url = self.url_policy.validate(request.source_url)
            self.compositor.templates.registry.get(request.template_kind)
        except ImageServiceError as e:
            e.stage = e.stage or STAGE_NAMES[RequestState.RECEIVED]
            raise

        fetch_url = self.url_policy.fetch_url(source_url)
        output_format = self.url_policy.output_format(source_url)

        raw = await self._stage(run, RequestState.FETCHING, self.fetcher.fetch, fetch_url)

        await self._check_connected(run, is_disconnected)
        avatar = await self._stage(run, RequestState.DECODING, self.decoder.decode, raw, offload=True)
        del raw

        await self._check_connected(run, is_disconnected)
        composited = await self._stage(
            run, RequestState.COMPOSITING, self.compositor.compose, avatar, request, offload=True
        )
        del avatar

        await self._check_connected(run, is_disconnected)
        return await self._stage(
            run, RequestState.ENCODING, self.encoder.encode, composited, output_format, offload=True
        )

    async def _stage(self, run: PipelineRun, state: RequestState, func, *args, offload: bool = False):
        """Advance to ``state`` and run one stage, tagging errors with it."""
        run.advance(state)
        stage = STAGE_NAMES[state]

        with LogContext(stage=stage):
            logger.debug("stage_started")
            start = time.perf_counter()
            try:
                with track_stage_latency(stage):
                    if offload:
                        # CPU-bound Pillow work stays off the event loop
                        result = await asyncio.to_thread(func, *args)
                    else:
                        result = await func(*args)
            except ImageServiceError as e:
                e.stage = e.stage or stage
                logger.warning(
                    "stage_failed",
                    error=e.message,
                    error_type=type(e).__name__,
                    duration_ms=int((time.perf_counter() - start) * 1000)
                )
                raise
            except Exception as e:
                logger.error("stage_failed", error=str(e), error_type=type(e).__name__)
                raise InternalPipelineError(f"{stage} failed: {e}", stage=stage) from e

            logger.debug("stage_completed", duration_ms=int((time.perf_counter() - start) * 1000))
        return result

    async def _check_connected(self, run: PipelineRun, is_disconnected: Optional[DisconnectCheck]):
        if is_disconnected is not None and await is_disconnected():
            logger.info("request_abandoned", state=run.state.value)
            raise RequestCancelledError(stage=STAGE_NAMES.get(run.state))
