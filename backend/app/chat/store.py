"""Message store gateway used by the delivery core.

The core only depends on the ``MessageStore`` interface. Every method is a
coroutine because real backends are I/O bound; a handler awaiting the store
must not hold up other connections.

Any method may raise ``StoreUnavailable``. Callers treat that as "the side
effect did not happen": a message whose ``mark_delivered`` failed stays
undelivered even if the push already reached the client (at-least-once).

Implementations:
    - InMemoryMessageStore: process-local dicts, used by tests and demos.
    - DuckDBMessageStore: embedded DuckDB file (see ``duckdb_store``).
"""
import itertools
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Hashable, Iterable, List, Set

from .schemas import Message

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Persistence boundary for messages and chat membership."""

    @abstractmethod
    async def create(self, chat_id: str, sender_id: str, body: str) -> Message:
        """Persist a new message with ``delivered=False, read=False``."""

    @abstractmethod
    async def mark_delivered(self, message_id: int) -> None:
        ...

    @abstractmethod
    async def mark_delivered_batch(self, message_ids: Iterable[int]) -> None:
        ...

    @abstractmethod
    async def mark_read(self, message_id: int) -> None:
        ...

    @abstractmethod
    async def fetch_history(self, chat_id: str, limit: int) -> List[Message]:
        """Return up to ``limit`` most recent messages, oldest first."""

    @abstractmethod
    async def fetch_undelivered_for(self, user_id: str) -> List[Message]:
        """Return undelivered messages addressed to ``user_id``, oldest first.

        Only messages in chats the user belongs to and sent by someone else.
        """

    @abstractmethod
    async def fetch_members(self, chat_id: str) -> List[str]:
        """Return the member user ids of ``chat_id`` (read-only lookup)."""

    def close(self) -> None:
        """Release backend resources. No-op by default."""


class InMemoryMessageStore(MessageStore):
    """Dict-backed store. State lives for the lifetime of the instance."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        # message_id -> Message (insertion order == creation order)
        self._messages: Dict[int, Message] = {}
        # chat_id -> set of member user ids
        self._members: Dict[Hashable, Set[str]] = defaultdict(set)

    def add_member(self, chat_id: str, user_id: str) -> None:
        self._members[str(chat_id)].add(str(user_id))

    def get(self, message_id: int) -> Message:
        """Return a copy of a stored message (for inspection)."""
        return self._messages[message_id].model_copy()

    async def create(self, chat_id: str, sender_id: str, body: str) -> Message:
        message = Message(id=next(self._ids), chatId=chat_id, senderId=sender_id, body=body)
        self._messages[message.id] = message
        return message.model_copy()

    async def mark_delivered(self, message_id: int) -> None:
        message = self._messages.get(message_id)
        if message is not None:
            message.delivered = True

    async def mark_delivered_batch(self, message_ids: Iterable[int]) -> None:
        for message_id in message_ids:
            await self.mark_delivered(message_id)

    async def mark_read(self, message_id: int) -> None:
        message = self._messages.get(message_id)
        if message is not None:
            message.read = True

    async def fetch_history(self, chat_id: str, limit: int) -> List[Message]:
        history = [m for m in self._messages.values() if m.chatId == str(chat_id)]
        history.sort(key=lambda m: (m.createdAt, m.id))
        if limit <= 0:
            return []
        return [m.model_copy() for m in history[-limit:]]

    async def fetch_undelivered_for(self, user_id: str) -> List[Message]:
        user_id = str(user_id)
        chats = {chat_id for chat_id, members in self._members.items() if user_id in members}
        pending = [
            m for m in self._messages.values()
            if m.chatId in chats and m.senderId != user_id and not m.delivered
        ]
        pending.sort(key=lambda m: (m.createdAt, m.id))
        return [m.model_copy() for m in pending]

    async def fetch_members(self, chat_id: str) -> List[str]:
        return sorted(self._members.get(str(chat_id), set()))
