"""Offline backlog dispatcher.

When a connection becomes active, every message addressed to that user that
is still undelivered is pushed as one ``offline_messages`` batch, grouped by
chat, and then marked delivered in bulk.

Marking happens regardless of whether the push reached the client
("mark on drain"). If the push silently fails, that backlog will not be
offered again on the next connect. A stricter variant would mark only after
a client ``ack``.
"""
import logging
from typing import Dict, List

from .errors import StoreUnavailable
from .schemas import Message, OfflineMessagesEvent
from .session import ConnectionSession
from .store import MessageStore

logger = logging.getLogger(__name__)


def group_by_chat(messages: List[Message]) -> Dict[str, List[Message]]:
    """Group messages by chat id, keeping their order within each chat."""
    grouped: Dict[str, List[Message]] = {}
    for message in messages:
        grouped.setdefault(message.chatId, []).append(message)
    return grouped


class BacklogDispatcher:
    """Drains a user's undelivered messages onto a freshly active session."""

    def __init__(self, store: MessageStore) -> None:
        self.store = store

    async def drain(self, user_id: str, session: ConnectionSession) -> int:
        """Push and mark the user's backlog.

        Store failures are logged and swallowed: the backlog simply stays
        pending for a later connect.

        Returns:
            Number of messages pushed and marked (0 when nothing was drained).
        """
        logger.info(f"[Backlog] Checking offline messages for user {user_id}")
        try:
            pending = await self.store.fetch_undelivered_for(user_id)
        except StoreUnavailable as e:
            logger.error(f"[Backlog] Error fetching offline messages for user {user_id}: {e}")
            return 0

        if not pending:
            return 0

        logger.info(f"[Backlog] Delivering {len(pending)} offline messages to user {user_id}")
        event = OfflineMessagesEvent(totalCount=len(pending), messagesByChat=group_by_chat(pending))
        if not await session.push(event.type, event):
            logger.warning(f"[Backlog] Push of offline messages to user {user_id} did not reach the client")

        message_ids = [m.id for m in pending]
        try:
            await self.store.mark_delivered_batch(message_ids)
        except StoreUnavailable as e:
            logger.error(f"[Backlog] Error marking offline messages delivered for user {user_id}: {e}")
            return 0

        logger.info(f"[Backlog] Marked {len(message_ids)} messages as delivered for user {user_id}")
        return len(message_ids)
