import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request as FastAPIRequest
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from parishgate.api import api_router
from parishgate.core.config import get_settings
from parishgate.core.lockout import LockoutPolicy
from parishgate.core.rate_limit import limiter, rate_limit_exceeded_handler
from parishgate.core.security_headers import SecurityHeadersMiddleware

settings = get_settings()

# Lockout, store and identity loggers report at INFO
logging.getLogger("parishgate").setLevel(logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    policy = LockoutPolicy.from_settings(settings)
    logger.info(
        "Login lockout: %d attempts, %s block, permanent after %d blocks; per-IP limits %s",
        policy.max_attempts,
        policy.block_duration,
        policy.permanent_block_after,
        "on" if settings.is_rate_limit_enabled else "off",
    )
    yield


app = FastAPI(
    title="Parish Gate API",
    description="Sign-in and brute-force protection for the parish portal",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: FastAPIRequest, exc: Exception) -> JSONResponse:
    """Log unexpected failures; callers only ever see a generic 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    content = {"detail": "Internal server error"}
    if not settings.is_production:
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)


app.add_middleware(SecurityHeadersMiddleware)

if settings.cors_origins.strip() == "*":
    # Bearer tokens only, so wildcard origins never carry cookies
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["Retry-After"],
    )

app.include_router(api_router, prefix="/api")


@app.get("/health")
def health_check():
    return {"status": "ok"}
