"""
FastAPI application with all routes.
"""
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from savegram.config import get_settings
from savegram.errors import (
    ExtractionFailed,
    FetchTimeout,
    InvalidInput,
    StreamAborted,
    UpstreamError,
    UpstreamUnavailable,
)
from savegram.instagram.routes import router as extract_router
from savegram.schemas import ErrorResponse, HealthResponse
from savegram.streaming.routes import router as stream_router

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SaveGram API",
    description="Resolve direct video URLs for Instagram posts and stream them as downloads",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.allowed_origin],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(extract_router)
app.include_router(stream_router)


# ============ Error Handlers ============

def _error(status_code: int, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(error=message, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return _error(400, "Invalid request.")


@app.exception_handler(InvalidInput)
async def handle_invalid_input(request: Request, exc: InvalidInput):
    return _error(400, str(exc))


@app.exception_handler(UpstreamError)
async def handle_upstream_error(request: Request, exc: UpstreamError):
    logger.error(f"[{request.url.path}] Upstream error: {exc}")
    return _error(502, str(exc))


@app.exception_handler(FetchTimeout)
async def handle_fetch_timeout(request: Request, exc: FetchTimeout):
    logger.error(f"[{request.url.path}] Timeout: {exc}")
    return _error(504, str(exc))


@app.exception_handler(ExtractionFailed)
async def handle_extraction_failed(request: Request, exc: ExtractionFailed):
    reasons = [f"{r.strategy}: {r.error}" for r in exc.reasons]
    logger.error(f"[{request.url.path}] Extraction failed: {reasons}")
    return _error(422, str(exc), reasons=reasons)


@app.exception_handler(UpstreamUnavailable)
async def handle_upstream_unavailable(request: Request, exc: UpstreamUnavailable):
    return _error(502, str(exc))


@app.exception_handler(StreamAborted)
async def handle_stream_aborted(request: Request, exc: StreamAborted):
    logger.error(f"[{request.url.path}] Stream failed: {exc}")
    return _error(502, str(exc))


# ============ Health Check ============

@app.get("/api/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return HealthResponse(status="ok", timestamp=int(time.time() * 1000))


# ============ Startup Event ============

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    logger.info("Starting SaveGram API")
    logger.info(f"Page fetch timeout: {settings.page_fetch_timeout}s")
    logger.info(f"Stream timeout: {settings.stream_timeout}s")
    if settings.api_backend_url:
        logger.info("External extraction API enabled")
