import logging
from datetime import UTC, datetime, timedelta
from time import perf_counter
from uuid import UUID, uuid4

from fastapi import Request
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.tenant import reset_current_tenant, set_current_tenant
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.logging.context import (
    reset_request_id,
    reset_tenant_id,
    set_request_id,
    set_tenant_id,
)
from app.infrastructure.observability.metrics import measure_redis, record_request

logger = logging.getLogger("app")


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    trace_id = getattr(request.state, "request_id", None) or str(uuid4())
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": {"code": code, "message": message}, "trace_id": trace_id},
    )


class TenantContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        tenant_header = request.headers.get("X-Tenant-ID")
        tenant_token = None
        log_tenant_token = None

        if tenant_header:
            try:
                tenant_id = UUID(tenant_header)
            except ValueError:
                return error_response(
                    request,
                    status_code=400,
                    code="400_INVALID_TENANT_HEADER",
                    message="Invalid X-Tenant-ID header",
                )
            tenant_token = set_current_tenant(tenant_id)
            log_tenant_token = set_tenant_id(str(tenant_id))

        try:
            return await call_next(request)
        finally:
            if tenant_token is not None:
                reset_current_tenant(tenant_token)
            if log_tenant_token is not None:
                reset_tenant_id(log_tenant_token)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started_at = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            record_request(
                method=request.method,
                path=getattr(route, "path", request.url.path),
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        request_token = set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(request_token)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class TenantRateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per tenant, weighted by the previous minute.

    A limit of zero or less disables the check.
    """

    def __init__(self, app, requests_per_minute: int = 120):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.redis = get_redis_client() if requests_per_minute > 0 else None

    def _sliding_count(self, tenant_header: str, now: datetime) -> float:
        current_key = f"rate:{tenant_header}:{now.strftime('%Y%m%d%H%M')}"
        previous_key = f"rate:{tenant_header}:{(now - timedelta(minutes=1)).strftime('%Y%m%d%H%M')}"

        pipeline = self.redis.pipeline()
        pipeline.incr(current_key, 1)
        pipeline.expire(current_key, 120)
        pipeline.get(previous_key)
        with measure_redis("rate_limit_pipeline"):
            current_count, _, previous_count_raw = pipeline.execute()

        elapsed_seconds = now.second + (now.microsecond / 1_000_000)
        previous_weight = max(0.0, 1.0 - (elapsed_seconds / 60.0))
        return float(current_count) + int(previous_count_raw or 0) * previous_weight

    async def dispatch(self, request: Request, call_next):
        tenant_header = request.headers.get("X-Tenant-ID")
        if self.redis is None or not tenant_header:
            return await call_next(request)

        try:
            sliding_count = self._sliding_count(tenant_header, datetime.now(UTC))
        except (RedisError, OSError) as exc:
            logger.warning("tenant_rate_limit_unavailable tenant_id=%s error=%s", tenant_header, exc)
            return await call_next(request)

        if sliding_count > self.requests_per_minute:
            logger.info("tenant_rate_limited tenant_id=%s count=%.1f", tenant_header, sliding_count)
            return error_response(
                request,
                status_code=429,
                code="429_RATE_LIMITED",
                message="Tenant rate limit exceeded",
            )
        return await call_next(request)
