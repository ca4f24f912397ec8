"""Delivery channel: transport-level room membership and event fanout.

The event router decides *who* should get an event; the delivery channel
knows *how* to reach them. The channel keeps its own room membership
(the transport view), which the router keeps in lockstep with the session
registry: join adds membership after the registry is updated, leave retracts
it before the registry is cleared.

Sending never blocks the caller. Each connection has its own bounded send
queue drained by a writer task, so the router can hand off events while it
holds its lock and a slow client only delays its own frames.

Wire format:
    Every outbound event is a JSON object {"type": <event>, **payload}.

Performance Notes:
    - Frames for one connection are written in the order they were queued
    - A connection whose send fails, or whose queue overflows, stops
      receiving events until it is disconnected
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Frames that may wait for one slow connection before it is dropped
DEFAULT_SEND_QUEUE_SIZE = 1000


class DeliveryChannel(ABC):
    """Abstract delivery channel used by the chat event router.

    Every method returns without waiting on the network.
    """

    @abstractmethod
    def join_room(self, connection_id: str, room: str) -> None:
        """Add a connection to a room's transport membership."""

    @abstractmethod
    def leave_room(self, connection_id: str, room: str) -> None:
        """Retract a connection from a room's transport membership."""

    @abstractmethod
    def send_to(self, connection_id: str, event: str, payload: dict) -> None:
        """Deliver an event to one connection."""

    @abstractmethod
    def broadcast_to_room(self, room: str, event: str, payload: dict) -> None:
        """Deliver an event to every member of a room."""

    @abstractmethod
    def broadcast_to_room_except(
        self, room: str, connection_id: str, event: str, payload: dict
    ) -> None:
        """Deliver an event to every member of a room but one."""


def make_frame(event: str, payload: dict) -> dict:
    return {"type": event, **payload}


class WebSocketDeliveryChannel(DeliveryChannel):
    """Delivery channel backed by FastAPI WebSocket connections.

    Args:
        send_queue_size: Frames buffered per connection before it is dropped.

    Thread Safety:
        Designed for async/await usage with a single event loop.
        It is NOT thread-safe for concurrent access from multiple threads.
    """

    def __init__(self, send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE) -> None:
        self.send_queue_size = send_queue_size

        # connection_id -> WebSocket
        self.connections: Dict[str, WebSocket] = {}

        # connection_id -> pending frames and the task writing them
        self._queues: Dict[str, asyncio.Queue] = {}
        self._writers: Dict[str, asyncio.Task] = {}
        self._closing: Set[asyncio.Task] = set()

        # room -> connection ids joined at the transport level
        self.rooms: Dict[str, Set[str]] = {}

    def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """Track an accepted WebSocket and start its writer task.

        Must be called from the running event loop.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.send_queue_size)
        self.connections[connection_id] = websocket
        self._queues[connection_id] = queue
        self._writers[connection_id] = asyncio.create_task(
            self._writer(connection_id, websocket, queue)
        )

    def disconnect(self, connection_id: str) -> None:
        """Forget a connection, its pending frames and all of its room memberships."""
        self._drop(connection_id)
        for room in list(self.rooms):
            self.leave_room(connection_id, room)

    def join_room(self, connection_id: str, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection_id)

    def leave_room(self, connection_id: str, room: str) -> None:
        members = self.rooms.get(room)
        if not members:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[room]

    def members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, set()))

    def send_to(self, connection_id: str, event: str, payload: dict) -> None:
        self._enqueue([connection_id], make_frame(event, payload))

    def broadcast_to_room(self, room: str, event: str, payload: dict) -> None:
        self._enqueue(sorted(self.members(room)), make_frame(event, payload))

    def broadcast_to_room_except(
        self, room: str, connection_id: str, event: str, payload: dict
    ) -> None:
        targets = sorted(cid for cid in self.members(room) if cid != connection_id)
        self._enqueue(targets, make_frame(event, payload))

    async def flush(self, connection_id: str) -> None:
        """Wait until every frame queued so far for a connection has been handled."""
        queue = self._queues.get(connection_id)
        if queue is not None:
            await queue.join()

    def _enqueue(self, connection_ids: Iterable[str], message: dict) -> None:
        for cid in connection_ids:
            queue = self._queues.get(cid)
            if queue is None:
                continue
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(f"Send queue full for {cid}; closing connection")
                websocket = self.connections.get(cid)
                self._drop(cid)
                if websocket is not None:
                    self._close_soon(websocket)

    async def _writer(self, connection_id: str, websocket: WebSocket, queue: asyncio.Queue) -> None:
        """Write queued frames to one connection, in order."""
        while True:
            message = await queue.get()
            try:
                success = await self._safe_send(websocket, message)
            finally:
                queue.task_done()
            if not success:
                # Room membership is left to the disconnect path, which also
                # clears the session registry.
                logger.debug(f"Dropping dead connection {connection_id}")
                self._drop(connection_id)
                return

    def _drop(self, connection_id: str) -> None:
        """Stop delivering to a connection and discard its pending frames."""
        self.connections.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()

        queue = self._queues.pop(connection_id, None)
        if queue is None:
            return
        while not queue.empty():
            queue.get_nowait()
            queue.task_done()

    def _close_soon(self, websocket: WebSocket) -> None:
        task = asyncio.create_task(self._safe_close(websocket))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _safe_close(self, websocket: WebSocket) -> None:
        try:
            await websocket.close(code=1008)
        except Exception as e:
            logger.debug(f"Failed to close connection: {e}")

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
