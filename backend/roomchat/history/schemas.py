"""Pydantic schemas for persisted chat history.

Two record kinds are stored: messages sent to a room and messages sent
directly between two users. Both are immutable once written. Field names
match the outbound wire format (camelCase), so a stored record can be
broadcast as-is.

These schemas are used by:
    - HistoryStore: DuckDB storage layer
    - ChatEventRouter: persist-before-broadcast for message events
    - GET /api/messages/...: history queries
"""
from pydantic import BaseModel, Field


class GroupMessageCreate(BaseModel):
    """A room message about to be persisted.

    Attributes:
        fromUser: Display name of the sender.
        room: Room the message was sent to.
        message: Message text.
    """
    fromUser: str = Field(..., min_length=1, description="Sender display name")
    room: str = Field(..., min_length=1, description="Target room")
    message: str = Field(..., description="Message text")


class GroupMessage(GroupMessageCreate):
    """A persisted room message.

    Attributes:
        id: Store-assigned sequence number.
        sentAt: Store-assigned Unix timestamp (seconds since epoch).
    """
    id: int = Field(..., description="Store-assigned id")
    sentAt: float = Field(..., description="Timestamp in seconds since epoch")


class PrivateMessageCreate(BaseModel):
    """A direct message about to be persisted.

    Attributes:
        fromUser: Display name of the sender.
        toUser: Display name of the addressee.
        message: Message text.
    """
    fromUser: str = Field(..., min_length=1, description="Sender display name")
    toUser: str = Field(..., min_length=1, description="Recipient display name")
    message: str = Field(..., description="Message text")


class PrivateMessage(PrivateMessageCreate):
    """A persisted direct message."""
    id: int = Field(..., description="Store-assigned id")
    sentAt: float = Field(..., description="Timestamp in seconds since epoch")
