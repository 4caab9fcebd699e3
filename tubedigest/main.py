"""
TubeDigest backend: Google OAuth session, channel directory, digest channel selection.

Config (and .env in development) loads in tubedigest.config. Adds CORS,
domain error handlers, global exception handler, optional DB init.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tubedigest.auth import me_router, router as auth_router
from tubedigest.channels import router as channels_router
from tubedigest.config import FRONTEND_URL, LOG_LEVEL, SKIP_DB_INIT
from tubedigest.database import init_db
from tubedigest.errors import LimitExceeded, UpstreamUnavailable

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create DB tables if not skipping (production uses Alembic migrations)
if not SKIP_DB_INIT:
    init_db()

app = FastAPI(
    title="TubeDigest Backend",
    description="OAuth session, YouTube channel directory, and digest channel selection (max 10).",
)

# CORS: explicit origin, allow credentials (cookies). Never use "*" with cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(LimitExceeded)
async def limit_exceeded_handler(request: Request, exc: LimitExceeded):
    logger.info("Selection limit exceeded on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "limit_exceeded"})


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    logger.warning("Upstream unavailable on %s: %s", request.url.path, exc.msg)
    return JSONResponse(status_code=503, content={"detail": "upstream_error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
    # Let FastAPI handle HTTPException (validation, auth, etc.)
    if isinstance(exc, HTTPException):
        raise exc
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(me_router)
app.include_router(channels_router)
