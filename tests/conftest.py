from __future__ import annotations

import os

import pytest

# Keep developer `.env` files out of the test run.
os.environ.setdefault("APP_ENV", "test")

from fastapi.testclient import TestClient  # noqa: E402

from main import create_app  # noqa: E402
from settings import Settings  # noqa: E402


class FakeSocket:
    """Stands in for a WebSocket in router tests; records what it was sent."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(message)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, upload_dir=tmp_path / "uploads")


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    # Entering the client shares one event loop between all websocket sessions.
    with TestClient(app) as c:
        yield c


@pytest.fixture
def fake_socket():
    return FakeSocket
