# cryptbin/main.py

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cryptbin.config import get_settings
from cryptbin.exceptions import BackendUnavailable, CryptbinError
from cryptbin.logging_config import configure_logging, request_id_var
from cryptbin.routers import pastes_router

settings = get_settings()
configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

logger = logging.getLogger(__name__)

app = FastAPI(title="Cryptbin")

app.include_router(pastes_router)


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    """Tag every log line of a request with one id, echoed as X-Request-ID."""
    request_id = uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------


@app.exception_handler(CryptbinError)
def cryptbin_error_handler(request: Request, exc: CryptbinError) -> JSONResponse:
    message = exc.message
    if isinstance(exc, BackendUnavailable):
        # backend internals stay in the logs
        logger.warning(
            f"{request.method} {request.url.path} failed: {exc.message}",
            extra={"event": "backend_unavailable"},
        )
        message = "Error saving or loading data. Please try again later."
    headers = {}
    if "retry_after" in exc.details:
        headers["Retry-After"] = str(exc.details["retry_after"])
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": 1, "message": message},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": 1, "message": "Invalid data."},
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "cryptbin", "store": settings.DATA_STORE}
