from __future__ import annotations

from contextlib import asynccontextmanager
from math import ceil

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lenstrace.api.routes import upload
from lenstrace.config import Settings, settings
from lenstrace.lens_core.admission.service import RateLimiter
from lenstrace.lens_core.cache.service import ResultCache
from lenstrace.lens_core.coordinator import RequestCoordinator
from lenstrace.lens_core.extract.protocol import ExtractionProtocol
from lenstrace.lens_core.models.errors import LensError, RateLimited
from lenstrace.lens_core.sessions.browser import PlaywrightLauncher
from lenstrace.lens_core.sessions.pool import SessionPool
from lenstrace.models.schemas import HealthResponse
from lenstrace.services.logger import logger


def build_coordinator(config: Settings = settings) -> RequestCoordinator:
    """Wire the Playwright-backed pool, cache and limiter from settings."""
    protocol = ExtractionProtocol(
        selectors=config.lens_selectors(),
        timings=config.protocol_timings(),
        lens_base_url=config.lens_base_url,
    )
    pool = SessionPool(
        PlaywrightLauncher(headless=config.browser_headless, args=config.browser_arg_list),
        protocol.run,
        max_sessions=config.max_sessions,
        max_queue=config.max_queue,
        warm_sessions=config.warm_sessions,
        max_jobs_per_session=config.max_jobs_per_session,
    )
    cache = ResultCache(
        default_ttl=config.cache_ttl_seconds,
        max_entries=config.cache_max_entries,
    )
    limiter = RateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_seconds,
    )
    return RequestCoordinator(pool=pool, cache=cache, limiter=limiter)


def create_app(coordinator: RequestCoordinator | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        active = coordinator or build_coordinator(settings)
        await active.start()
        app.state.coordinator = active
        logger.info("lenstrace ready")
        yield
        # Shutdown
        await active.shutdown()

    app = FastAPI(
        title="lenstrace",
        description="Related image sources via headless visual search",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LensError)
    async def lens_error_handler(request: Request, exc: LensError):
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(ceil(exc.retry_after))}
        elif exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Something went wrong"})

    # Routes
    app.include_router(upload.router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health(request: Request):
        active: RequestCoordinator = request.app.state.coordinator
        return HealthResponse(
            status="ok",
            service="lenstrace",
            pool=active.pool.stats(),
            cache_entries=len(active.cache),
        )

    return app


app = create_app()
