"""Chat history module: append-only log of room and direct messages."""

from .schemas import GroupMessage, GroupMessageCreate, PrivateMessage, PrivateMessageCreate
from .service import HistoryStore, HistoryStoreError, get_history_store
from .router import router

__all__ = [
    "GroupMessage",
    "GroupMessageCreate",
    "PrivateMessage",
    "PrivateMessageCreate",
    "HistoryStore",
    "HistoryStoreError",
    "get_history_store",
    "router",
]
