from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

from infra24.app.cache import core as cache  # noqa: E402
from infra24.app.core.config import settings  # noqa: E402
from infra24.app.core.errors import Infra24Error  # noqa: E402
from infra24.app.core.logging import get_logger, setup_logging  # noqa: E402
from infra24.app.db.core import create_all_tables, get_session_factory  # noqa: E402
from infra24.app.tenancy.core import seed_default_tenants  # noqa: E402

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, seed the built-in tenants and connect the cache."""
    create_all_tables()
    db = get_session_factory()()
    try:
        seed_default_tenants(db)
    finally:
        db.close()

    if cache.init_redis():
        logger.info("Redis cache initialized successfully")
    else:
        logger.warning("Redis cache not available - running without cache")

    yield

    if cache.redis_client:
        try:
            cache.redis_client.close()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.warning(f"Error closing Redis connection: {e}")
    cache.reset_redis_client()


app = FastAPI(title="Infra24 API", version=settings.APP_VERSION, lifespan=lifespan)


@app.exception_handler(Infra24Error)
async def infra24_error_handler(request: Request, exc: Infra24Error):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.detail}")
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


from infra24.app.middleware.core import TenantContextMiddleware  # noqa: E402
from infra24.app.middleware.logging import RequestLoggingMiddleware  # noqa: E402
from infra24.app.middleware.security import SecurityHeadersMiddleware  # noqa: E402

# The last middleware added runs first: tenant resolution must precede request logging
app.add_middleware(RequestLoggingMiddleware, log_request_body=settings.LOG_REQUEST_BODY)
app.add_middleware(TenantContextMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

from infra24.app.api.v1 import router as v1_router  # noqa: E402

app.include_router(v1_router, prefix="/api/v1")


@app.get("/health")
def health():
    from infra24.app.services.health import basic_health

    return basic_health()
