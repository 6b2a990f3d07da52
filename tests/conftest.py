from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:  # pragma: no cover - path setup
    sys.path.insert(0, str(ROOT_DIR))

import wagateway.api as gateway_api
from wagateway.events import LifecycleEvent
from wagateway.transport import SentMessage


SECRET = "test-secret"


class FakeTransport:
    def __init__(self) -> None:
        self.handler: Any = None
        self.initialize_calls = 0
        self.destroy_calls = 0
        self.state = "CONNECTED"
        self.sent: list[tuple[str, str]] = []
        self.send_error: Exception | None = None
        self.state_error: Exception | None = None
        self.destroy_error: Exception | None = None
        self.initialize_error: Exception | None = None
        self.closed = False

    def subscribe(self, handler: Any) -> None:
        self.handler = handler

    async def publish(self, event: LifecycleEvent) -> None:
        await self.handler(event)

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.initialize_error is not None:
            raise self.initialize_error

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.destroy_error is not None:
            raise self.destroy_error

    async def get_state(self) -> str:
        if self.state_error is not None:
            raise self.state_error
        return self.state

    async def send_message(self, address: str, text: str) -> SentMessage:
        self.sent.append((address, text))
        if self.send_error is not None:
            raise self.send_error
        return SentMessage(id=f"true_{address}_3EB0ABC")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def gateway(monkeypatch: pytest.MonkeyPatch, fake_transport: FakeTransport):
    monkeypatch.setenv("SECRET_KEY", SECRET)
    monkeypatch.setenv("WA_SEND_PACING", "0")
    monkeypatch.setenv("WA_AUTH_GRACE", "30")
    monkeypatch.setenv("WA_LOADING_GRACE", "30")
    monkeypatch.setenv("WA_RESTART_DELAY", "0.01")
    monkeypatch.delenv("WA_INTERNAL_TOKEN", raising=False)
    monkeypatch.setattr(gateway_api, "WawebTransport", lambda *args, **kwargs: fake_transport)
    app = gateway_api.create_app()
    with TestClient(app) as client:
        yield client, fake_transport, app


def push_event(client: TestClient, event: str, **fields: Any):
    return client.post(
        "/webhook/waweb", json={"event": event, **fields}, headers=auth_headers()
    )


def auth_headers() -> dict[str, str]:
    return {"x-secret-key": SECRET}

