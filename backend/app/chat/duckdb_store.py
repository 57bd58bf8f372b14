"""DuckDB-backed message store.

Database Schema:
    messages table:
        - id: Sequence-assigned primary key (monotonic)
        - chat_id: Chat identifier
        - sender_id: Sender user id
        - body: Message text
        - created_at: Creation time (UTC, stored naive)
        - delivered: Chat-wide delivered flag
        - is_read: Read flag

    chat_members table:
        - chat_id, user_id: Membership pairs (managed outside the core)

Thread Safety:
    A DuckDB connection is NOT thread-safe. Blocking calls run in the default
    executor so the event loop keeps serving other connections, and a lock
    serializes them on the single connection. Each operation is one
    transaction; a call abandoned on timeout rolls back instead of
    committing late.

Usage:
    store = DuckDBMessageStore(db_path="messages.duckdb", timeout_seconds=5)
    message = await store.create("10", "1", "hi")
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

import duckdb

from .errors import StoreUnavailable
from .schemas import Message
from .store import MessageStore

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    id          BIGINT PRIMARY KEY,
    chat_id     VARCHAR NOT NULL,
    sender_id   VARCHAR NOT NULL,
    body        VARCHAR NOT NULL,
    created_at  TIMESTAMP NOT NULL,
    delivered   BOOLEAN NOT NULL DEFAULT false,
    is_read     BOOLEAN NOT NULL DEFAULT false
)
"""

_CREATE_MEMBERS = """
CREATE TABLE IF NOT EXISTS chat_members (
    chat_id  VARCHAR NOT NULL,
    user_id  VARCHAR NOT NULL,
    PRIMARY KEY (chat_id, user_id)
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id)"

_COLUMNS = "id, chat_id, sender_id, body, created_at, delivered, is_read"


def _row_to_message(row: tuple) -> Message:
    created_at = row[4]
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Message(
        id=row[0],
        chatId=row[1],
        senderId=row[2],
        body=row[3],
        createdAt=created_at,
        delivered=bool(row[5]),
        read=bool(row[6]),
    )


class _Call:
    """Hand-off between an awaiting coroutine and its worker thread.

    Exactly one side wins: either the worker reaches commit first, or the
    caller abandons the call on timeout and the worker rolls back.
    """

    PENDING, COMMITTING, ABANDONED = range(3)

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.state = self.PENDING

    def _move(self, new_state: int) -> bool:
        with self._lock:
            if self.state != self.PENDING:
                return False
            self.state = new_state
            return True

    def abandon(self) -> bool:
        return self._move(self.ABANDONED)

    def begin_commit(self) -> bool:
        return self._move(self.COMMITTING)


def _consume_result(future: "asyncio.Future[Any]") -> None:
    # Abandoned calls finish later with StoreUnavailable; nobody awaits them.
    if not future.cancelled():
        future.exception()


class DuckDBMessageStore(MessageStore):
    """Message store persisted in an embedded DuckDB database.

    Attributes:
        _db_path: Path to the DuckDB file (``":memory:"`` for tests).
        _timeout: Per-call timeout in seconds; 0 disables it.
    """

    _default_db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None, timeout_seconds: float = 0) -> None:
        self._db_path = db_path or self._default_db_path
        self._timeout = timeout_seconds
        self._lock = threading.Lock()
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self._db_path)
        self._initialize_db()
        logger.info("[Store] DuckDB message store initialized with db=%s", self._db_path)

    def _initialize_db(self) -> None:
        """Create schema objects. Safe to call multiple times."""
        self._conn.execute(_CREATE_SEQUENCE)
        self._conn.execute(_CREATE_MESSAGES)
        self._conn.execute(_CREATE_MEMBERS)
        self._conn.execute(_INDEX)

    def _execute(self, sql: str, params: Optional[list] = None) -> List[tuple]:
        """Run one statement. Only valid inside ``_transaction``."""
        cursor = self._conn.execute(sql, params or [])
        return cursor.fetchall() if cursor.description else []

    def _transaction(self, work: Callable[[], Any], call: Optional[_Call] = None) -> Any:
        """Run ``work`` in one transaction on the shared connection.

        If ``call`` was abandoned by a timed-out caller, the work is skipped
        or rolled back, so a failed call never leaves a side effect behind.
        """
        with self._lock:
            if self._conn is None:
                raise StoreUnavailable("store is closed")
            if call is not None and call.state == _Call.ABANDONED:
                raise StoreUnavailable("store call abandoned after timeout")
            try:
                self._conn.begin()
                try:
                    result = work()
                except BaseException:
                    self._conn.rollback()
                    raise
                if call is not None and not call.begin_commit():
                    self._conn.rollback()
                    raise StoreUnavailable("store call abandoned after timeout")
                self._conn.commit()
                return result
            except duckdb.Error as e:
                raise StoreUnavailable(str(e)) from e

    async def _run(self, work: Callable[[], Any]) -> Any:
        """Run a transaction off the event loop, bounded by the timeout."""
        call = _Call()
        future = asyncio.get_running_loop().run_in_executor(None, self._transaction, work, call)
        if not self._timeout or self._timeout <= 0:
            return await future
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            if call.abandon():
                future.add_done_callback(_consume_result)
                logger.error(f"[Store] Call abandoned after {self._timeout}s; its transaction will roll back")
                raise StoreUnavailable(f"store call timed out after {self._timeout}s") from e
            # Worker already committing; the result stands
            return await future

    # -----------------------------------------------------------------------
    # Membership (seeding helper, not part of the core)
    # -----------------------------------------------------------------------

    def add_member(self, chat_id: str, user_id: str) -> None:
        self._transaction(lambda: self._execute(
            "INSERT OR IGNORE INTO chat_members (chat_id, user_id) VALUES (?, ?)",
            [str(chat_id), str(user_id)],
        ))

    # -----------------------------------------------------------------------
    # MessageStore
    # -----------------------------------------------------------------------

    async def create(self, chat_id: str, sender_id: str, body: str) -> Message:
        def _insert() -> Message:
            created_at = datetime.now(timezone.utc).replace(tzinfo=None)
            message_id = self._execute("SELECT nextval('messages_seq')")[0][0]
            self._execute(
                """
                INSERT INTO messages (id, chat_id, sender_id, body, created_at, delivered, is_read)
                VALUES (?, ?, ?, ?, ?, false, false)
                """,
                [message_id, str(chat_id), str(sender_id), body, created_at],
            )
            return _row_to_message((message_id, str(chat_id), str(sender_id), body, created_at, False, False))

        return await self._run(_insert)

    async def mark_delivered(self, message_id: int) -> None:
        await self._run(lambda: self._execute(
            "UPDATE messages SET delivered = true WHERE id = ?", [message_id]
        ))

    async def mark_delivered_batch(self, message_ids: Iterable[int]) -> None:
        ids = list(message_ids)
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        await self._run(lambda: self._execute(
            f"UPDATE messages SET delivered = true WHERE id IN ({placeholders})", ids
        ))

    async def mark_read(self, message_id: int) -> None:
        await self._run(lambda: self._execute(
            "UPDATE messages SET is_read = true WHERE id = ?", [message_id]
        ))

    async def fetch_history(self, chat_id: str, limit: int) -> List[Message]:
        rows = await self._run(lambda: self._execute(
            f"""
            SELECT {_COLUMNS} FROM (
                SELECT {_COLUMNS} FROM messages
                WHERE chat_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            ) ORDER BY created_at ASC, id ASC
            """,
            [str(chat_id), max(limit, 0)],
        ))
        return [_row_to_message(row) for row in rows]

    async def fetch_undelivered_for(self, user_id: str) -> List[Message]:
        rows = await self._run(lambda: self._execute(
            """
            SELECT m.id, m.chat_id, m.sender_id, m.body, m.created_at, m.delivered, m.is_read
            FROM messages m
            JOIN chat_members cm ON m.chat_id = cm.chat_id
            WHERE cm.user_id = ?
              AND m.sender_id != ?
              AND (m.delivered = false OR m.delivered IS NULL)
            ORDER BY m.created_at ASC, m.id ASC
            """,
            [str(user_id), str(user_id)],
        ))
        return [_row_to_message(row) for row in rows]

    async def fetch_members(self, chat_id: str) -> List[str]:
        rows = await self._run(lambda: self._execute(
            "SELECT user_id FROM chat_members WHERE chat_id = ? ORDER BY user_id",
            [str(chat_id)],
        ))
        return [row[0] for row in rows]

    def get(self, message_id: int) -> Message:
        """Synchronous read of a single message (for inspection)."""
        rows = self._transaction(lambda: self._execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ))
        if not rows:
            raise KeyError(message_id)
        return _row_to_message(rows[0])

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
