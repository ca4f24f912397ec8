"""Message history API endpoints.

Endpoints:
    GET /api/messages/room/{room}: Recent messages of a room
    GET /api/messages/private/{user1}/{user2}: Recent direct messages between two users

Both endpoints return records oldest first. The private query is symmetric,
so /private/alice/bob and /private/bob/alice return the same list.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from roomchat.config import get_config

from .schemas import GroupMessage, PrivateMessage
from .service import HistoryStoreError, get_history_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["history"])


def _effective_limit(limit: Optional[int]) -> int:
    settings = get_config().history
    if limit is None:
        return settings.default_limit
    return min(limit, settings.max_limit)


@router.get("/room/{room}", response_model=List[GroupMessage])
async def get_room_history(
    room: str,
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
):
    """Get the most recent messages of a room.

    Example:
        GET /api/messages/room/sports?limit=50
    """
    try:
        return get_history_store().query_group(room, _effective_limit(limit))
    except HistoryStoreError as e:
        logger.error(f"[History] Room query failed for {room}: {e}")
        return JSONResponse({"error": "Server error"}, status_code=500)


@router.get("/private/{user1}/{user2}", response_model=List[PrivateMessage])
async def get_private_history(
    user1: str,
    user2: str,
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
):
    """Get the most recent direct messages exchanged by two users."""
    try:
        return get_history_store().query_private(user1, user2, _effective_limit(limit))
    except HistoryStoreError as e:
        logger.error(f"[History] Private query failed for {user1}/{user2}: {e}")
        return JSONResponse({"error": "Server error"}, status_code=500)
