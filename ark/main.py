import logging
from contextlib import asynccontextmanager
from time import monotonic

import redis as redis_lib
from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from ark import __version__
from ark.api.deployments import router as deployments_router
from ark.api.instances import router as instances_router
from ark.api.jobs import router as jobs_router
from ark.api.products import router as products_router
from ark.api.ssh_users import router as ssh_users_router
from ark.api.tailscale import router as tailscale_router
from ark.config import settings
from ark.db import SessionLocal
from ark.errors import register_error_handlers
from ark.logging import configure_logging
from ark.metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Ark deploy %s starting (jenkins=%s, tailnet=%s)",
        __version__,
        settings.jenkins_base_url,
        settings.tailscale_tailnet,
    )
    yield


app = FastAPI(title="Ark Deploy API", version=__version__, lifespan=lifespan)

configure_logging()
register_error_handlers(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    started = monotonic()
    response = await call_next(request)
    route = request.scope.get("route")
    # label by route template so ids do not explode cardinality
    path = getattr(route, "path", "unmatched")
    labels = {"method": request.method, "path": path, "status": str(response.status_code)}
    REQUEST_COUNT.labels(**labels).inc()
    REQUEST_LATENCY.labels(**labels).observe(monotonic() - started)
    if response.status_code >= 500:
        REQUEST_ERRORS.labels(**labels).inc()
    return response


def _include_api_router(router):
    app.include_router(router, prefix="/api")


_include_api_router(products_router)
_include_api_router(deployments_router)
_include_api_router(instances_router)
_include_api_router(tailscale_router)
_include_api_router(ssh_users_router)
_include_api_router(jobs_router)


@app.get("/health")
def health_check():
    checks = {"db": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["db"] = True
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unavailable: %s", exc)
    finally:
        db.close()

    # redis is optional; only report it when configured
    if settings.redis_url:
        checks["redis"] = False
        try:
            r = redis_lib.from_url(settings.redis_url, socket_timeout=2)
            r.ping()
            checks["redis"] = True
        except (redis_lib.RedisError, ValueError) as exc:
            logger.warning("Health check: redis unavailable: %s", exc)

    all_ok = all(checks.values())
    return {
        "status": "ok" if all_ok else "degraded",
        "checks": checks,
    }


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
