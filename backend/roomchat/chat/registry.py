"""In-memory registry of live chat sessions.

The registry is the single owner of presence state: which connection is
registered under which display name, and which room (if any) it is in.
Room occupancy is never stored separately; `occupants()` derives it by
scanning the sessions, so the two views cannot diverge.

Thread Safety:
    Not thread-safe. The ChatEventRouter that owns the registry serializes
    every access behind its own lock.
"""
from typing import Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class Session(BaseModel):
    """Presence record for one live connection.

    Attributes:
        connectionId: Transport-assigned connection identifier.
        displayName: Name chosen at registration; never changes.
        currentRoom: Room the connection is in, or None.
    """
    model_config = ConfigDict(validate_assignment=True)

    connectionId: str = Field(..., description="Transport connection id")
    displayName: str = Field(..., description="Display name shown to other users")
    currentRoom: Optional[str] = Field(default=None, description="Joined room, if any")


class SessionRegistry:
    """Maps connection id -> Session.

    Display names are not unique: two connections may register the same
    name. Lookups by name resolve to the earliest registered session.
    """

    def __init__(self) -> None:
        # connection_id -> Session, in registration order
        self._sessions: Dict[str, Session] = {}

    def register(self, connection_id: str, display_name: str) -> Session:
        """Create (or overwrite) the session for a connection."""
        session = Session(connectionId=connection_id, displayName=display_name)
        # Re-registration counts as a new session for name resolution order
        self._sessions.pop(connection_id, None)
        self._sessions[connection_id] = session
        return session

    def lookup(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def set_room(self, connection_id: str, room: Optional[str]) -> None:
        """Set or clear a session's room. Unknown connections are ignored."""
        session = self._sessions.get(connection_id)
        if session is not None:
            session.currentRoom = room

    def remove(self, connection_id: str) -> Optional[Session]:
        """Remove a session and return its last state, or None if absent."""
        return self._sessions.pop(connection_id, None)

    def occupants(self, room: str) -> Set[str]:
        """Display names of every session currently in `room`."""
        return {s.displayName for s in self._sessions.values() if s.currentRoom == room}

    def find_by_display_name(self, display_name: str) -> Optional[Session]:
        """First registered session using `display_name`, if any."""
        for session in self._sessions.values():
            if session.displayName == display_name:
                return session
        return None

    def __len__(self) -> int:
        return len(self._sessions)
