"""Shared test fixtures and configuration for backend tests."""
import time
from typing import Any, Callable, Iterable, List, Set

import pytest

from app.chat.errors import StoreUnavailable
from app.chat.manager import ChatManager, set_chat_manager
from app.chat.store import InMemoryMessageStore
from app.config import AppConfig, StoreSettings, reset_config, set_config


class FakeTransport:
    """Stand-in for a WebSocket: records frames, can be closed."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.closed = False

    async def send_json(self, data: Any) -> None:
        if self.closed:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True

    def frames(self, event_type: str) -> List[dict]:
        return [f for f in self.sent if f.get("type") == event_type]


class FlakyStore(InMemoryMessageStore):
    """In-memory store whose listed operations raise StoreUnavailable."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: Set[str] = set()
        self.calls: List[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise StoreUnavailable(f"{name} failed")

    async def create(self, chat_id, sender_id, body):
        self._check("create")
        return await super().create(chat_id, sender_id, body)

    async def mark_delivered(self, message_id):
        self._check("mark_delivered")
        return await super().mark_delivered(message_id)

    async def mark_delivered_batch(self, message_ids: Iterable[int]):
        self._check("mark_delivered_batch")
        return await super().mark_delivered_batch(message_ids)

    async def mark_read(self, message_id):
        self._check("mark_read")
        return await super().mark_read(message_id)

    async def fetch_history(self, chat_id, limit):
        self._check("fetch_history")
        return await super().fetch_history(chat_id, limit)

    async def fetch_undelivered_for(self, user_id):
        self._check("fetch_undelivered_for")
        return await super().fetch_undelivered_for(user_id)

    async def fetch_members(self, chat_id):
        self._check("fetch_members")
        return await super().fetch_members(chat_id)


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until true; used to sync with server-side handlers."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met before timeout")


@pytest.fixture(autouse=True)
def memory_config():
    """Use an in-memory store config so no test touches a DuckDB file."""
    set_config(AppConfig(store=StoreSettings(backend="memory")))
    yield
    reset_config()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def chat_manager(store):
    """Install a fresh ChatManager for the app and the test."""
    manager = ChatManager(store)
    set_chat_manager(manager)
    yield manager
    set_chat_manager(None)


@pytest.fixture
def transport_factory():
    return FakeTransport
