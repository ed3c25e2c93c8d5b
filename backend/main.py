import json
import logging
import logging.config
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.domain import models  # noqa: F401
from app.interfaces.api.router import api_router
from app.interfaces.http.middleware import (
    MetricsMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    TenantContextMiddleware,
    TenantRateLimitMiddleware,
    error_response,
)

logging_config_path = Path(__file__).with_name("logging.json")
if logging_config_path.exists():
    logging.config.dictConfig(json.loads(logging_config_path.read_text(encoding="utf-8")))
else:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("app")

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TenantContextMiddleware)
app.add_middleware(TenantRateLimitMiddleware, requests_per_minute=settings.tenant_rate_limit_per_minute)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(MetricsMiddleware)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error_code" in exc.detail and "message" in exc.detail:
        code = str(exc.detail["error_code"])
        message = str(exc.detail["message"])
    else:
        code = str(exc.status_code)
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code >= 500:
        logger.error("api_error path=%s code=%s message=%s", request.url.path, code, message)
    return error_response(request, status_code=exc.status_code, code=code, message=message)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    for error in errors:
        if error.get("type") == "missing":
            field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
            return error_response(
                request,
                status_code=400,
                code="400_BAD_REQUEST",
                message=f"Missing required field: {field}",
            )
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Request validation failed")
    return error_response(
        request,
        status_code=422,
        code="422_INVALID_INPUT",
        message=f"{location}: {message}" if location else message,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return error_response(
        request,
        status_code=500,
        code="500_INTERNAL_ERROR",
        message="Internal server error",
    )


app.include_router(api_router)
