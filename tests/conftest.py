"""Shared fixtures: SQLite-backed stores, a running app, and user/token factories."""
import json

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

from blurbboard import Identity, IdentityVerifier, MessageStore, Settings
from blurbboard.store import messages
from main import create_app

TEST_SECRET = "test-secret-for-board-tokens-0123456789"


class FakeWebSocket:
    """Records frames sent by the server; can be told to fail every send."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.closed_code = None
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    def drop(self):
        """Simulate the transport closing under the server, as after a missed ping."""
        self.client_state = WebSocketState.DISCONNECTED

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code=1000):
        self.closed_code = code

    def events(self, event_type):
        return [event for event in self.sent if event.get("t") == event_type]


class FakeRandom:
    """Returns queued values from randint, then repeats the last one."""

    def __init__(self, values):
        self.values = list(values)

    def randint(self, low, high):
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


async def insert_row(store, message_id, content, timestamp, author, parent_id=None):
    """Insert a message with an explicit timestamp, bypassing id generation."""
    async with store.engine.begin() as conn:
        await conn.execute(messages.insert().values(
            id=message_id, content=content, timestamp=timestamp, author=author, parent_id=parent_id,
        ))


@pytest_asyncio.fixture
async def store(tmp_path):
    store = MessageStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await store.create_schema()
    yield store
    await store.dispose()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'board.db'}",
        JWT_SECRET=TEST_SECRET,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def board(app):
    """TestClient with the lifespan running (schema created, monitor started)."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_user(app, board):
    """Create a user on the app's event loop and return (user, token)."""
    verifier = IdentityVerifier(TEST_SECRET)

    def _make(username):
        user = board.portal.call(app.state.store.create_user, username)
        return user, verifier.create_token(Identity(id=user.id, username=user.username))

    return _make
