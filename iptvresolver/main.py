import asyncio
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from iptvresolver.api.routes import router
from iptvresolver.config.settings import settings
from iptvresolver.core.cache import CacheStore
from iptvresolver.services.resolver import ResolverConfig, SeriesResolver
from iptvresolver.services.stream import StreamService
from iptvresolver.services.xtream import XtreamClient
from iptvresolver.utils.database import create_store, setup_database, teardown_database
from iptvresolver.utils.http_client import http_client
from iptvresolver.utils.logger import setup_logger, addon_logger, api_logger
from iptvresolver.utils.validators import credentials_from_settings


# ===========================
# Logger Setup
# ===========================
setup_logger(settings.LOG_LEVEL)


# ===========================
# Request Timing Middleware
# ===========================
QUIET_PATHS = frozenset({"/health"})


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            api_logger.error(f"{request.method} {request.url.path} failed: {type(e).__name__}")
            raise
        finally:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            if request.url.path not in QUIET_PATHS:
                target = f"{request.url.path}?{request.url.query}" if request.url.query else request.url.path
                api_logger.debug(f"{request.method} {target} - {status_code} - {elapsed_ms}ms")

        response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
        return response


# ===========================
# Startup Cache Warming
# ===========================
async def warm_caches(stream_service: StreamService, credentials):
    try:
        await stream_service.warm_caches(credentials)
    except Exception as e:
        addon_logger.error(f"Cache warming failed: {type(e).__name__}")


# ===========================
# Application Lifecycle
# ===========================
@asynccontextmanager
async def lifespan(app: FastAPI):
    await setup_database()

    cache = CacheStore.from_settings(create_store(), settings)
    resolver = SeriesResolver(XtreamClient(), cache, ResolverConfig.from_settings(settings))
    stream_service = StreamService(resolver)
    credentials = credentials_from_settings(settings)

    app.state.stream_service = stream_service
    app.state.credentials = credentials

    warm_task = None
    if credentials is not None:
        warm_task = asyncio.create_task(warm_caches(stream_service, credentials))

    yield

    if warm_task is not None and not warm_task.done():
        warm_task.cancel()
        try:
            await warm_task
        except asyncio.CancelledError:
            pass

    await http_client.close()
    await teardown_database()


# ===========================
# FastAPI Application Setup
# ===========================
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(router)


# ===========================
# Application Entry Point
# ===========================
if __name__ == "__main__":

    provider = credentials_from_settings(settings)
    if provider is None:
        addon_logger.error("No provider configured (XTREAM_URL, XTREAM_USERNAME, XTREAM_PASSWORD)!")
        addon_logger.error("Resolution endpoints will answer 503 until a provider is configured")

    addon_logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} on port {settings.PORT}")
    addon_logger.info(f"Provider: {provider.base_url if provider else 'none'}")
    addon_logger.info(f"Storage: {settings.DATABASE_TYPE} (schema {settings.DATABASE_VERSION})")
    addon_logger.info(f"Probe budget: {settings.PROBE_BUDGET_SECONDS}s, concurrency {settings.EPISODE_FETCH_CONCURRENCY}")
    addon_logger.info(f"Proxy: {'enabled' if settings.PROXY_URL else 'disabled'}")
    addon_logger.info(f"Log level: {settings.LOG_LEVEL}")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.PORT,
        log_config=None
    )
