"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from skyport import __version__
from skyport.app.api.v1 import instances_router, nodes_router, workflows_router
from skyport.app.api.v1.dependencies import (
    close_control_plane,
    get_control_plane,
    init_control_plane,
)
from skyport.app.config import get_settings
from skyport.app.logging import setup_logging
from skyport.app.metrics import get_metrics_response
from skyport.app.middleware import LoggingMiddleware
from skyport.app.relay import router as relay_router
from skyport.core.errors import SkyportError
from skyport.core.logging_schema import LogEvent
from skyport.infra import RedisKeyValueStore, close_redis, get_redis, init_redis

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()

    await init_redis()
    kv = RedisKeyValueStore(get_redis(), prefix=settings.redis.key_prefix)
    await init_control_plane(kv)

    logger.info("Starting application", extra={"event": LogEvent.APP_STARTED})

    yield

    logger.info("Shutting down application", extra={"event": LogEvent.APP_STOPPED})
    await close_control_plane()
    await close_redis()


app = FastAPI(title="Skyport", version=__version__, lifespan=lifespan)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(SkyportError)
async def skyport_error_handler(request: Request, exc: SkyportError) -> JSONResponse:
    """Handle SkyportError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


app.include_router(instances_router, prefix="/api/v1")
app.include_router(workflows_router, prefix="/api/v1")
app.include_router(nodes_router, prefix="/api/v1")
app.include_router(relay_router, prefix="/api/v1")


async def _check_service(check_fn: callable) -> str:
    """Check service health and return status string."""
    try:
        await check_fn()
        return "connected"
    except RuntimeError:
        return "not initialized"
    except Exception as e:
        return f"error: {e}"


async def _check_redis() -> None:
    redis_client = get_redis()
    await redis_client.ping()


async def _check_control_plane() -> None:
    get_control_plane()


@app.get("/health")
async def health():
    results = await asyncio.gather(
        _check_service(_check_redis),
        _check_service(_check_control_plane),
    )

    services = {
        "redis": results[0],
        "control_plane": results[1],
    }

    is_degraded = any(s != "connected" for s in services.values())

    return {
        "status": "degraded" if is_degraded else "ok",
        "version": __version__,
        "services": services,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    if not get_settings().metrics.enabled:
        return JSONResponse(status_code=404, content={"detail": "Metrics disabled"})
    return get_metrics_response()
