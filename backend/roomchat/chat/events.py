"""Presence and message routing for chat sessions.

ChatEventRouter turns one inbound event from a connection into the right
set of outbound notifications. It owns the session registry and is the only
code that mutates it.

Event model:
    Events are fire-and-forget. A handler either applies the event or
    ignores it (unknown connection, no current room, unknown recipient...).
    Ignoring is silent: the outcome is returned to the caller for logging
    and tests but nothing is sent back to the client.

    The one failure that does surface is a history write failure: a message
    that was not durably recorded is never broadcast, and HistoryStoreError
    propagates to the transport endpoint, which reports it to the sender.

Concurrency:
    Every handler runs under a single asyncio.Lock, so registry reads never
    observe a half-applied join or leave and deliveries of one handler are
    not interleaved with another's. Within a handler, persistence always
    completes before any delivery.

    The delivery channel only queues frames, so nothing awaits the network
    while the lock is held and a slow client cannot stall other sessions.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel

from roomchat.history.schemas import GroupMessageCreate, PrivateMessageCreate
from roomchat.history.service import HistoryStore

from .delivery import DeliveryChannel
from .registry import Session, SessionRegistry

logger = logging.getLogger(__name__)

# Sender name used for join/leave/disconnect notices
SYSTEM_USER = "System"


# =============================================================================
# Event vocabulary
# =============================================================================


class InboundEvent(str, Enum):
    """Event types a client may send over its connection."""
    REGISTER_USER = "registerUser"
    JOIN_ROOM = "joinRoom"
    LEAVE_ROOM = "leaveRoom"
    GROUP_MESSAGE = "groupMessage"
    PRIVATE_MESSAGE = "privateMessage"
    TYPING = "typing"
    STOP_TYPING = "stopTyping"


class OutboundEvent(str, Enum):
    """Event types the server delivers to clients."""
    ROOM_MESSAGE = "roomMessage"
    UPDATE_USERS = "updateUsers"
    PRIVATE_MESSAGE = "privateMessage"
    TYPING = "typing"
    STOP_TYPING = "stopTyping"
    ERROR = "error"


# =============================================================================
# Handler outcomes
# =============================================================================


class IgnoreReason(str, Enum):
    """Why an event was dropped without effect."""
    UNKNOWN_SESSION = "unknown_session"
    NO_ROOM = "no_room"
    UNKNOWN_ROOM = "unknown_room"
    INVALID_NAME = "invalid_name"
    EMPTY_MESSAGE = "empty_message"
    MISSING_RECIPIENT = "missing_recipient"
    RECIPIENT_NOT_FOUND = "recipient_not_found"
    UNKNOWN_EVENT = "unknown_event"


@dataclass(frozen=True)
class Applied:
    """The event changed state and/or produced deliveries.

    Attributes:
        record: The persisted message, for message events.
        recipient_found: False when a direct message was stored but its
            recipient had no live connection.
    """
    record: Optional[BaseModel] = None
    recipient_found: bool = True


@dataclass(frozen=True)
class Ignored:
    reason: IgnoreReason


Outcome = Union[Applied, Ignored]


def _as_text(value: object) -> str:
    return value if isinstance(value, str) else ""


# =============================================================================
# Router
# =============================================================================


class ChatEventRouter:
    """Routes inbound chat events against the session registry.

    Args:
        channel: Where notifications are delivered.
        history: Where room and direct messages are persisted.
        room_catalog: Joinable rooms. None accepts any room name.
        registry: Session registry to own (a new one by default).
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        history: HistoryStore,
        room_catalog: Optional[Iterable[str]] = None,
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self.channel = channel
        self.history = history
        self.room_catalog = list(room_catalog) if room_catalog is not None else None
        self.registry = registry if registry is not None else SessionRegistry()
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def dispatch(self, connection_id: str, event: dict) -> Outcome:
        """Route a decoded client event to its handler."""
        event_type = event.get("type")

        if event_type == InboundEvent.REGISTER_USER:
            return await self.register(connection_id, _as_text(event.get("displayName")))
        if event_type == InboundEvent.JOIN_ROOM:
            return await self.join(connection_id, _as_text(event.get("room")))
        if event_type == InboundEvent.LEAVE_ROOM:
            return await self.leave(connection_id)
        if event_type == InboundEvent.GROUP_MESSAGE:
            return await self.group_message(connection_id, _as_text(event.get("message")))
        if event_type == InboundEvent.PRIVATE_MESSAGE:
            return await self.private_message(
                connection_id,
                _as_text(event.get("toUser")),
                _as_text(event.get("message")),
            )
        if event_type == InboundEvent.TYPING:
            return await self.typing(connection_id, _as_text(event.get("toUser")) or None)
        if event_type == InboundEvent.STOP_TYPING:
            return await self.stop_typing(connection_id, _as_text(event.get("toUser")) or None)

        return self._ignore(IgnoreReason.UNKNOWN_EVENT, connection_id, str(event_type))

    # -------------------------------------------------------------------------
    # Presence
    # -------------------------------------------------------------------------

    async def register(self, connection_id: str, display_name: str) -> Outcome:
        """Register a display name for a connection.

        Registering again replaces the session. If the old session was in a
        room it leaves that room first.
        """
        display_name = display_name.strip()
        if not display_name:
            return self._ignore(IgnoreReason.INVALID_NAME, connection_id, "registerUser")

        async with self._lock:
            previous = self.registry.lookup(connection_id)
            old_room = previous.currentRoom if previous else None
            if previous is not None and old_room is not None:
                self.channel.leave_room(connection_id, old_room)

            self.registry.register(connection_id, display_name)
            logger.info(f"[Router] {display_name} registered on {connection_id}")

            if previous is not None and old_room is not None:
                self._announce(old_room, f"{previous.displayName} has left the room")
        return Applied()

    async def join(self, connection_id: str, room: str) -> Outcome:
        """Move a session into `room`, leaving its current room first.

        Joining the room the session is already in is treated as a leave
        followed by a join: the room sees both notices.
        """
        if not room.strip():
            return self._ignore(IgnoreReason.UNKNOWN_ROOM, connection_id, "joinRoom")
        if self.room_catalog is not None and room not in self.room_catalog:
            return self._ignore(IgnoreReason.UNKNOWN_ROOM, connection_id, "joinRoom")

        async with self._lock:
            session = self.registry.lookup(connection_id)
            if session is None:
                return self._ignore(IgnoreReason.UNKNOWN_SESSION, connection_id, "joinRoom")

            old_room = session.currentRoom
            # Transport membership is retracted before the registry moves
            # the session, and added only once the registry shows the new room.
            if old_room is not None:
                self.channel.leave_room(connection_id, old_room)
            self.registry.set_room(connection_id, room)
            self.channel.join_room(connection_id, room)
            logger.info(f"[Router] {session.displayName} joined {room} (from {old_room})")

            if old_room is not None:
                self._announce(old_room, f"{session.displayName} has left the room")
            self._announce(room, f"{session.displayName} has joined the room")
        return Applied()

    async def leave(self, connection_id: str) -> Outcome:
        """Take a session out of its current room."""
        async with self._lock:
            session = self.registry.lookup(connection_id)
            if session is None:
                return self._ignore(IgnoreReason.UNKNOWN_SESSION, connection_id, "leaveRoom")
            room = session.currentRoom
            if room is None:
                return self._ignore(IgnoreReason.NO_ROOM, connection_id, "leaveRoom")

            self.channel.leave_room(connection_id, room)
            self.registry.set_room(connection_id, None)
            logger.info(f"[Router] {session.displayName} left {room}")

            self._announce(room, f"{session.displayName} has left the room")
        return Applied()

    async def disconnect(self, connection_id: str) -> Outcome:
        """Destroy a connection's session. Safe to call more than once."""
        async with self._lock:
            session = self.registry.remove(connection_id)
            if session is None:
                return self._ignore(IgnoreReason.UNKNOWN_SESSION, connection_id, "disconnect")
            logger.info(
                f"[Router] {session.displayName} disconnected ({connection_id}), "
                f"{len(self.registry)} sessions remain"
            )

            room = session.currentRoom
            if room is not None:
                self.channel.leave_room(connection_id, room)
                self._announce(room, f"{session.displayName} has disconnected")
        return Applied()

    async def occupants(self, room: str) -> List[str]:
        """Sorted display names currently in `room`."""
        async with self._lock:
            return sorted(self.registry.occupants(room))

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def group_message(self, connection_id: str, text: str) -> Outcome:
        """Persist a room message, then broadcast it to the whole room.

        Raises:
            HistoryStoreError: If the message could not be stored. Nothing is
                broadcast in that case.
        """
        async with self._lock:
            session = self.registry.lookup(connection_id)
            if session is None:
                return self._ignore(IgnoreReason.UNKNOWN_SESSION, connection_id, "groupMessage")
            room = session.currentRoom
            if room is None:
                return self._ignore(IgnoreReason.NO_ROOM, connection_id, "groupMessage")
            if not text.strip():
                return self._ignore(IgnoreReason.EMPTY_MESSAGE, connection_id, "groupMessage")

            record = self.history.append_group(
                GroupMessageCreate(fromUser=session.displayName, room=room, message=text)
            )
            self.channel.broadcast_to_room(
                room, OutboundEvent.ROOM_MESSAGE.value, record.model_dump()
            )
        return Applied(record=record)

    async def private_message(self, connection_id: str, to_user: str, text: str) -> Outcome:
        """Persist a direct message, deliver it to the recipient and echo it back.

        The message is stored even when no connection currently uses the
        recipient's name; only the live delivery is skipped.

        Raises:
            HistoryStoreError: If the message could not be stored.
        """
        async with self._lock:
            session = self.registry.lookup(connection_id)
            if session is None:
                return self._ignore(IgnoreReason.UNKNOWN_SESSION, connection_id, "privateMessage")
            if not to_user.strip():
                return self._ignore(IgnoreReason.MISSING_RECIPIENT, connection_id, "privateMessage")
            if not text.strip():
                return self._ignore(IgnoreReason.EMPTY_MESSAGE, connection_id, "privateMessage")

            record = self.history.append_private(
                PrivateMessageCreate(fromUser=session.displayName, toUser=to_user, message=text)
            )
            payload = record.model_dump()

            recipient = self.registry.find_by_display_name(to_user)
            targets = [recipient.connectionId] if recipient is not None else []
            if connection_id not in targets:
                targets.append(connection_id)
            for target in targets:
                self.channel.send_to(target, OutboundEvent.PRIVATE_MESSAGE.value, payload)

            if recipient is None:
                logger.debug(f"[Router] {to_user} is offline; private message stored only")
        return Applied(record=record, recipient_found=recipient is not None)

    # -------------------------------------------------------------------------
    # Typing indicators
    # -------------------------------------------------------------------------

    async def typing(self, connection_id: str, to_user: Optional[str] = None) -> Outcome:
        """Tell a recipient, or the rest of the room, that the sender is typing."""
        return await self._indicate(connection_id, to_user, OutboundEvent.TYPING)

    async def stop_typing(self, connection_id: str, to_user: Optional[str] = None) -> Outcome:
        """Same targeting as typing(), with the stopTyping event."""
        return await self._indicate(connection_id, to_user, OutboundEvent.STOP_TYPING)

    async def _indicate(
        self, connection_id: str, to_user: Optional[str], event: OutboundEvent
    ) -> Outcome:
        async with self._lock:
            session = self.registry.lookup(connection_id)
            if session is None:
                return self._ignore(IgnoreReason.UNKNOWN_SESSION, connection_id, event.value)
            payload = {"fromUser": session.displayName}

            if to_user:
                recipient = self.registry.find_by_display_name(to_user)
                if recipient is None or recipient.connectionId == connection_id:
                    return self._ignore(IgnoreReason.RECIPIENT_NOT_FOUND, connection_id, event.value)
                self.channel.send_to(recipient.connectionId, event.value, payload)
                return Applied()

            if session.currentRoom is None:
                return self._ignore(IgnoreReason.NO_ROOM, connection_id, event.value)
            self.channel.broadcast_to_room_except(
                session.currentRoom, connection_id, event.value, payload
            )
        return Applied()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _announce(self, room: str, text: str) -> None:
        """Broadcast a system notice and the current occupant list to a room."""
        self.channel.broadcast_to_room(room, OutboundEvent.ROOM_MESSAGE.value, {
            "fromUser": SYSTEM_USER,
            "room": room,
            "message": text,
            "sentAt": time.time(),
        })
        self.channel.broadcast_to_room(room, OutboundEvent.UPDATE_USERS.value, {
            "room": room,
            "occupants": sorted(self.registry.occupants(room)),
        })

    @staticmethod
    def _ignore(reason: IgnoreReason, connection_id: str, event: str) -> Ignored:
        logger.debug(f"[Router] Ignored {event} from {connection_id}: {reason.value}")
        return Ignored(reason)
