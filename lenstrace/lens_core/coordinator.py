from __future__ import annotations

import time
from typing import Any

from lenstrace.lens_core.admission.service import RateLimiter, validate
from lenstrace.lens_core.cache.service import ResultCache, SingleFlight, cache_key
from lenstrace.lens_core.models.errors import InternalError, LensError, RateLimited
from lenstrace.lens_core.models.interfaces import ExtractionRequest, ExtractionResult
from lenstrace.lens_core.sessions.pool import SessionPool
from lenstrace.services.logger import log_event, logger
from lenstrace.tools import web_utils


class RequestCoordinator:
    """Admission, cache lookup, coalesced extraction and write-through for one request."""

    def __init__(
        self,
        *,
        pool: SessionPool,
        cache: ResultCache,
        limiter: RateLimiter,
        cache_ttl: float | None = None,
    ):
        self.pool = pool
        self.cache = cache
        self.limiter = limiter
        self.cache_ttl = cache_ttl
        self._flights = SingleFlight()
        self.extractions = 0

    async def start(self) -> None:
        await self.pool.start()

    async def shutdown(self) -> None:
        await self.pool.shutdown()

    async def handle(self, raw: Any, client_id: str) -> ExtractionResult:
        decision = self.limiter.check(client_id)
        if not decision.allowed:
            raise RateLimited(retry_after=decision.retry_after)

        request = validate(raw)
        try:
            return await self.resolve(request)
        except LensError:
            raise
        except Exception as exc:
            logger.exception(f"Unexpected failure for {request.image_url}: {exc}")
            raise InternalError(str(exc)) from exc

    async def resolve(self, request: ExtractionRequest) -> ExtractionResult:
        key = cache_key(request.image_url)

        if request.bypass_cache:
            logger.info(f"Bypassing cache for {key}")
            return await self._flights.do(
                ("bypass", key),
                lambda: self._extract_and_store(key, request.image_url),
            )

        cached = self.cache.get(key)
        if cached is not None:
            log_event(
                "cache_hit",
                "Returning cached result",
                domain=web_utils.extract_domain(key),
                sources=len(cached.sources),
            )
            return cached

        return await self._flights.do(
            ("lookup", key),
            lambda: self._extract_and_store(key, request.image_url),
        )

    async def _extract_and_store(self, key: str, image_url: str) -> ExtractionResult:
        started = time.monotonic()
        self.extractions += 1
        try:
            result = await self.pool.submit(image_url)
        except LensError as exc:
            log_event(
                "extraction_failed",
                str(exc),
                kind=exc.kind,
                domain=web_utils.extract_domain(key),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise
        self.cache.put(key, result, self.cache_ttl)
        log_event(
            "extraction_completed",
            "Extraction completed",
            domain=web_utils.extract_domain(key),
            sources=len(result.sources),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result
