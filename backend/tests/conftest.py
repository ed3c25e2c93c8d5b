import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("TENANT_RATE_LIMIT_PER_MINUTE", "0")
os.environ.setdefault("OPENAI_API_KEY", "")

import fnmatch
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.application.services import generation_service
from app.application.services.ai_provider import AICompletionRequest, AIProviderError, BaseAIProvider
from app.application.services.content_pipeline import ARTICLE_SCHEMA, OUTLINE_SCHEMA, TOPICS_SCHEMA
from app.domain import models  # noqa: F401
from app.infrastructure.cache import redis_client as redis_client_module
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.base import Base
from app.infrastructure.db.session import get_db
from main import app

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")


class FakeRedis:
    """In-memory subset of the redis client API used by the app."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expirations: dict[str, int] = {}

    def ping(self) -> bool:
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        if ex is not None:
            self.expirations[key] = ex
        return True

    def setex(self, key, ttl, value):
        return self.set(key, value, ex=ttl)

    def incrby(self, key, amount=1):
        value = int(self.store.get(key, 0)) + amount
        self.store[key] = str(value)
        return value

    def incr(self, key, amount=1):
        return self.incrby(key, amount)

    def expire(self, key, seconds):
        self.expirations[key] = seconds
        return key in self.store

    def ttl(self, key):
        if key not in self.store:
            return -2
        return self.expirations.get(key, -1)

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.store)

    def mget(self, keys):
        return [self.store.get(key) for key in keys]

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def keys(self, pattern="*"):
        return [key for key in self.store if fnmatch.fnmatch(key, pattern)]

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            return self.delete(key)
        return 0


class FakeAIProvider(BaseAIProvider):
    """Deterministic provider keyed on the requested output schema."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.requests: list[AICompletionRequest] = []

    async def complete_json(self, request: AICompletionRequest) -> dict:
        self.requests.append(request)
        if self.fail:
            raise AIProviderError("provider offline")
        if request.output_schema is TOPICS_SCHEMA:
            return {"topics": ["Remote Work", "AI Tools", "Supply Chains"]}
        if request.output_schema is OUTLINE_SCHEMA:
            return {
                "title": "October 2026",
                "sections": [
                    {"type": "cover", "title": "Cover Story", "pages": 1},
                    {"type": "feature", "title": "Deep Dive on AI Tools", "pages": 3, "keyPoints": ["Adoption"]},
                    {"type": "tips", "title": "Ten Practical Tips", "pages": 2},
                    {"type": "closing", "title": "Until Next Month", "pages": 1},
                ],
            }
        if request.output_schema is ARTICLE_SCHEMA:
            section = request.variables.get("section") or request.variables.get("article") or {}
            title = f"Story: {section.get('title', 'Untitled')}"
            return {
                "title": title,
                "html": f"<article><h1>{title}</h1><p>{'Insightful reporting. ' * 10}</p></article>",
                "summary": "A short summary",
                "tags": ["business"],
                "readingTime": 4,
                "wordCount": 420,
            }
        raise AIProviderError("unexpected request")


@pytest.fixture
def db_engine():
    if TEST_DATABASE_URL:
        engine = create_engine(TEST_DATABASE_URL, pool_pre_ping=True)
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            pytest.skip(f"Database unavailable for integration tests: {exc}")
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr(redis_client_module, "get_redis_client", lambda: redis)
    return redis


@pytest.fixture
def enqueued_jobs(monkeypatch):
    job_ids: list[UUID] = []
    monkeypatch.setattr(
        generation_service,
        "enqueue_generation_job",
        lambda job_id, countdown=None: job_ids.append(job_id),
    )
    return job_ids


@pytest.fixture
def fake_provider(monkeypatch):
    provider = FakeAIProvider()
    monkeypatch.setattr(generation_service, "get_ai_provider", lambda: provider)
    return provider


@pytest.fixture
def client(db_session, fake_redis, enqueued_jobs):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = lambda: fake_redis
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _auth_headers(tenant_id: str, access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}", "X-Tenant-ID": tenant_id}


@pytest.fixture
def owner(client: TestClient) -> dict:
    response = client.post(
        "/signup",
        json={"tenant_name": "Acme Media", "owner_email": "owner@acme.test", "owner_password": "secret123"},
    )
    assert response.status_code == 201, response.text
    data = response.json()
    return {
        "tenant_id": data["tenant"]["id"],
        "tenant_slug": data["tenant"]["slug"],
        "headers": _auth_headers(data["tenant"]["id"], data["tokens"]["access_token"]),
    }


@pytest.fixture
def member_headers(client: TestClient, owner: dict):
    def _login(email: str, role: str) -> dict:
        created = client.post(
            "/api/tenant/members",
            headers=owner["headers"],
            json={"email": email, "password": "secret123", "role": role},
        )
        assert created.status_code == 201, created.text
        response = client.post(
            "/auth/login",
            headers={"X-Tenant-ID": owner["tenant_id"]},
            json={"email": email, "password": "secret123"},
        )
        assert response.status_code == 200, response.text
        return _auth_headers(owner["tenant_id"], response.json()["access_token"])

    return _login
