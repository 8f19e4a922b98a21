# tests/conftest.py
from __future__ import annotations

import asyncio
from typing import List

import pytest
from fastapi.testclient import TestClient

from teamchat.core.config import Settings
from teamchat.core.errors import Unauthorized
from teamchat.core.state import build_state
from teamchat.main import create_app
from teamchat.services.assistant_gateway import MockGateway
from teamchat.services.auth_service import Identity


class FakeCredentials:
    """Accepts any token except "bad"; the token doubles as the user id."""

    async def verify(self, token):
        if not token or token == "bad":
            raise Unauthorized("Invalid token")
        return Identity(participant_id=token, handle=f"{token}@example.com")


class ScriptedGateway(MockGateway):
    """Replays a list of outcomes: strings are replies, exceptions are raised."""

    def __init__(self, outcomes):
        super().__init__()
        self.outcomes = list(outcomes)
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def drain(queue: asyncio.Queue) -> List[dict]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def settings():
    return Settings(
        STORAGE_BACKEND="memory",
        ASSISTANT_PROVIDER="mock",
        ASSISTANT_RETRY_DELAY=0,
        MOCK_ASSISTANT_DELAY=0,
        JWT_SECRET="test-secret",
        WS_IDLE_TIMEOUT=10,
        SWEEP_INTERVAL=3600,
    )


@pytest.fixture
def gateway():
    return MockGateway(responses=["4"])


@pytest.fixture
def app(settings, gateway):
    return create_app(settings=settings, state=build_state(settings, gateway=gateway))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client: TestClient, email: str, password: str = "secret123") -> dict:
    resp = client.post("/auth/register", json={"email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
