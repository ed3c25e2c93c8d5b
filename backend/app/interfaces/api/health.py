from time import perf_counter

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


def _elapsed_ms(started_at: float) -> float:
    return round((perf_counter() - started_at) * 1000, 2)


def check_database() -> dict:
    started_at = perf_counter()
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"status": "down", "latency_ms": None}
    return {"status": "up", "latency_ms": _elapsed_ms(started_at)}


def check_redis() -> dict:
    started_at = perf_counter()
    try:
        redis_client = get_redis_client()
        with measure_redis("health_ping"):
            redis_client.ping()
        latency_ms = _elapsed_ms(started_at)
        with measure_redis("health_worker_heartbeat"):
            worker_alive = bool(redis_client.exists(settings.worker_heartbeat_key))
    except (RedisError, OSError):
        return {"status": "down", "latency_ms": None, "worker_alive": False}
    return {"status": "up", "latency_ms": latency_ms, "worker_alive": worker_alive}


def collect_service_status() -> dict:
    database = check_database()
    redis_state = check_redis()
    return {
        "api": "up",
        "database": database["status"],
        "redis": redis_state["status"],
        "worker_alive": redis_state["worker_alive"],
        "db_latency_ms": database["latency_ms"],
        "redis_latency_ms": redis_state["latency_ms"],
    }


def _all_up(services: dict) -> bool:
    return services["database"] == "up" and services["redis"] == "up" and services["worker_alive"] is True


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check() -> dict:
    services = collect_service_status()
    return {"status": "ok" if _all_up(services) else "degraded", "services": services}


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response) -> dict:
    services = collect_service_status()
    if not _all_up(services):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": services}
    return {"status": "ready", "services": services}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
