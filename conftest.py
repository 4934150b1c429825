"""
Shared pytest fixtures: environment, database reset, API client and tokens.
"""
import os

# Settings and the engine are created at import time
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["DATABASE_URL"] = "sqlite://"

import json
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.config import settings
from app.database import Base, SessionLocal, engine
from app.main import app
from app.services.ai_service import AIService, get_ai_service


def make_token(user_id: str = "user-1", email: str = "user@example.com") -> str:
    return jwt.encode({"userId": user_id, "email": email}, settings.jwt_secret, algorithm="HS256")


def auth_headers(user_id: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def sse_record(payload) -> str:
    """One upstream `data:` record as the provider would send it."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


def delta(content: str) -> dict:
    return {"choices": [{"delta": {"content": content}}]}


def parse_events(body: str) -> List[dict]:
    """Decode a downstream text/event-stream body into its JSON events."""
    return [
        json.loads(line[len("data: "):])
        for line in body.split("\n")
        if line.startswith("data: ")
    ]


def mock_provider(frames=None, status_code=200, body=b"", requests=None, error=None) -> AIService:
    """
    AIService backed by httpx.MockTransport.

    `frames` are sent as separate body chunks; `requests` (a list) collects
    every request the provider receives; `error` is raised instead of
    answering, as a failing transport would.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if error is not None:
            raise error
        if frames is None:
            return httpx.Response(status_code, content=body)

        async def stream():
            for frame in frames:
                yield frame.encode("utf-8")

        return httpx.Response(status_code, content=stream())

    return AIService(api_url="https://provider.test/v1/chat/completions", transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def use_provider():
    """Route the API's upstream calls to a mock provider."""
    def _use(service: AIService) -> AIService:
        app.dependency_overrides[get_ai_service] = lambda: service
        return service

    return _use
