"""DuckDB-based chat history storage.

This module provides the append-only message log used by the chat event
router. Every room message and direct message is written here before it is
delivered to anyone, so a history query issued after a client has seen a
live message is guaranteed to return it.

Database Schema:
    group_messages table:
        - id: Auto-incrementing primary key
        - from_user: Sender display name
        - room: Room the message was sent to
        - message: Message text
        - sent_at: Unix timestamp (seconds, DOUBLE)

    private_messages table:
        - id: Auto-incrementing primary key
        - from_user: Sender display name
        - to_user: Recipient display name
        - message: Message text
        - sent_at: Unix timestamp (seconds, DOUBLE)

Thread Safety:
    The DuckDB connection is NOT thread-safe. The service is meant to be
    used from the single event loop that runs the chat handlers.

Usage:
    store = HistoryStore.get_instance()
    record = store.append_group(GroupMessageCreate(fromUser="alice", room="sports", message="hi"))
    messages = store.query_group("sports", limit=100)
"""
import logging
import time
from typing import List, Optional

import duckdb

from roomchat.config import get_config

from .schemas import GroupMessage, GroupMessageCreate, PrivateMessage, PrivateMessageCreate

logger = logging.getLogger(__name__)

# Default number of records returned by a history query
DEFAULT_QUERY_LIMIT = 100


class HistoryStoreError(Exception):
    """Raised when a message could not be durably recorded or read back."""


class HistoryStore:
    """Singleton service for the chat message log in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["HistoryStore"] = None
    _db_path: str = "chat_history.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the history store.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file, or ":memory:".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._last_sent_at = 0.0
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "HistoryStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and forget the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create sequences and tables (idempotent)."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS group_messages_seq START 1;")
        conn.execute("CREATE SEQUENCE IF NOT EXISTS private_messages_seq START 1;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS group_messages (
                id BIGINT DEFAULT nextval('group_messages_seq') PRIMARY KEY,
                from_user VARCHAR NOT NULL,
                room VARCHAR NOT NULL,
                message VARCHAR NOT NULL,
                sent_at DOUBLE NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS private_messages (
                id BIGINT DEFAULT nextval('private_messages_seq') PRIMARY KEY,
                from_user VARCHAR NOT NULL,
                to_user VARCHAR NOT NULL,
                message VARCHAR NOT NULL,
                sent_at DOUBLE NOT NULL
            )
        """)

    def _next_timestamp(self) -> float:
        # Never hand out a timestamp older than the previous one, so
        # sentAt order always agrees with append order.
        now = time.time()
        if now < self._last_sent_at:
            now = self._last_sent_at
        self._last_sent_at = now
        return now

    def append_group(self, record: GroupMessageCreate) -> GroupMessage:
        """Persist a room message.

        Args:
            record: The message to store.

        Returns:
            The stored record with its id and sentAt.

        Raises:
            HistoryStoreError: If the write failed.
        """
        sent_at = self._next_timestamp()
        try:
            row = self._get_connection().execute(
                """
                INSERT INTO group_messages (from_user, room, message, sent_at)
                VALUES (?, ?, ?, ?)
                RETURNING id
                """,
                [record.fromUser, record.room, record.message, sent_at],
            ).fetchone()
        except duckdb.Error as e:
            logger.error("Failed to persist group message in room %s: %s", record.room, e)
            raise HistoryStoreError(f"Could not store message for room {record.room}") from e

        return GroupMessage(id=row[0], sentAt=sent_at, **record.model_dump())

    def append_private(self, record: PrivateMessageCreate) -> PrivateMessage:
        """Persist a direct message.

        Raises:
            HistoryStoreError: If the write failed.
        """
        sent_at = self._next_timestamp()
        try:
            row = self._get_connection().execute(
                """
                INSERT INTO private_messages (from_user, to_user, message, sent_at)
                VALUES (?, ?, ?, ?)
                RETURNING id
                """,
                [record.fromUser, record.toUser, record.message, sent_at],
            ).fetchone()
        except duckdb.Error as e:
            logger.error(
                "Failed to persist private message %s -> %s: %s",
                record.fromUser, record.toUser, e,
            )
            raise HistoryStoreError("Could not store private message") from e

        return PrivateMessage(id=row[0], sentAt=sent_at, **record.model_dump())

    def query_group(self, room: str, limit: int = DEFAULT_QUERY_LIMIT) -> List[GroupMessage]:
        """Get the most recent messages of a room.

        Args:
            room: Room to query.
            limit: Maximum number of messages to return.

        Returns:
            Up to `limit` messages, oldest first.
        """
        try:
            result = self._get_connection().execute(
                """
                SELECT id, from_user, room, message, sent_at FROM (
                    SELECT id, from_user, room, message, sent_at
                    FROM group_messages
                    WHERE room = ?
                    ORDER BY sent_at DESC, id DESC
                    LIMIT ?
                )
                ORDER BY sent_at ASC, id ASC
                """,
                [room, limit],
            ).fetchall()
        except duckdb.Error as e:
            raise HistoryStoreError(f"Could not read history for room {room}") from e

        return [
            GroupMessage(id=row[0], fromUser=row[1], room=row[2], message=row[3], sentAt=row[4])
            for row in result
        ]

    def query_private(
        self, user_a: str, user_b: str, limit: int = DEFAULT_QUERY_LIMIT
    ) -> List[PrivateMessage]:
        """Get the most recent direct messages exchanged between two users.

        The result does not depend on argument order.

        Returns:
            Up to `limit` messages, oldest first.
        """
        try:
            result = self._get_connection().execute(
                """
                SELECT id, from_user, to_user, message, sent_at FROM (
                    SELECT id, from_user, to_user, message, sent_at
                    FROM private_messages
                    WHERE (from_user = ? AND to_user = ?)
                       OR (from_user = ? AND to_user = ?)
                    ORDER BY sent_at DESC, id DESC
                    LIMIT ?
                )
                ORDER BY sent_at ASC, id ASC
                """,
                [user_a, user_b, user_b, user_a, limit],
            ).fetchall()
        except duckdb.Error as e:
            raise HistoryStoreError("Could not read private history") from e

        return [
            PrivateMessage(id=row[0], fromUser=row[1], toUser=row[2], message=row[3], sentAt=row[4])
            for row in result
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def get_history_store() -> HistoryStore:
    """Get the process-wide history store, opened at the configured path."""
    return HistoryStore.get_instance(get_config().history.db_path)
