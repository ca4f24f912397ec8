"""Shared test fixtures and configuration for backend tests."""
import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient

from roomchat.auth.service import AccountService
from roomchat.chat.delivery import DeliveryChannel
from roomchat.chat.events import ChatEventRouter
from roomchat.chat.router import set_event_router
from roomchat.config import (
    DEFAULT_ROOMS,
    AppSettings,
    AuthSettings,
    HistorySettings,
    reset_config,
    set_config,
)
from roomchat.history.service import HistoryStore
from roomchat.main import app


class RecordingChannel(DeliveryChannel):
    """Delivery channel that records every delivery per connection.

    Broadcasts are expanded into one entry per member, so tests can check
    exactly which connections received which events.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Set[str]] = {}
        self.sent: List[Tuple[str, str, dict]] = []

    def join_room(self, connection_id: str, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection_id)

    def leave_room(self, connection_id: str, room: str) -> None:
        self.rooms.get(room, set()).discard(connection_id)

    def members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, set()))

    def send_to(self, connection_id: str, event: str, payload: dict) -> None:
        self.sent.append((connection_id, event, payload))

    def broadcast_to_room(self, room: str, event: str, payload: dict) -> None:
        for cid in sorted(self.members(room)):
            self.sent.append((cid, event, payload))

    def broadcast_to_room_except(
        self, room: str, connection_id: str, event: str, payload: dict
    ) -> None:
        for cid in sorted(self.members(room) - {connection_id}):
            self.sent.append((cid, event, payload))

    def received(self, connection_id: str, event: Optional[str] = None) -> List[dict]:
        """Payloads delivered to one connection, optionally filtered by event."""
        return [
            payload for cid, ev, payload in self.sent
            if cid == connection_id and (event is None or ev == event)
        ]

    def events_for(self, connection_id: str) -> List[str]:
        return [ev for cid, ev, _ in self.sent if cid == connection_id]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture(autouse=True)
def test_settings():
    """Point every service at in-memory databases and reset singletons."""
    settings = AppSettings(
        history=HistorySettings(db_path=":memory:"),
        auth=AuthSettings(db_path=":memory:", pbkdf2_iterations=1000),
    )
    set_config(settings)
    HistoryStore.reset_instance()
    AccountService.reset_instance()
    set_event_router(None)
    yield settings
    set_event_router(None)
    HistoryStore.reset_instance()
    AccountService.reset_instance()
    reset_config()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Entering the client runs the lifespan and keeps every WebSocket session
    on one event loop, like a real server.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def history():
    store = HistoryStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def chat(channel, history):
    """A ChatEventRouter wired to a recording channel and in-memory history."""
    return ChatEventRouter(channel=channel, history=history, room_catalog=DEFAULT_ROOMS)


class FakeWebSocket:
    """Collects frames sent to it.

    A failing socket raises on every send; a stalled one blocks each send
    until `release` is set.
    """

    def __init__(self, fail: bool = False, stalled: bool = False) -> None:
        self.fail = fail
        self.release = asyncio.Event()
        if not stalled:
            self.release.set()
        self.frames: List[dict] = []
        self.closed_with: Optional[int] = None

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        await self.release.wait()
        self.frames.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code
