"""Delivery router: push-now vs. leave-pending for each recipient.

For every recipient of a new message:

    1. Not in the presence registry -> undeliverable now.
    2. Online but not subscribed to the chat room -> undeliverable now
       ("online but not looking at this chat").
    3. Otherwise push ``message`` to the session, then ``mark_delivered``.

Push and mark are independent and not atomic. A successful push followed by
a failed store update leaves the message undelivered even though the client
has it, so the backlog may deliver it again later (at-least-once).

``delivered`` is one chat-wide flag: the first successful push + mark flips
it for everyone. No retries happen here; recipients who missed the message
get it from the backlog dispatcher on their next connect.
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from .errors import StoreUnavailable
from .presence import PresenceRegistry
from .schemas import DeliverySummary, Message
from .session import ConnectionSession
from .store import MessageStore

logger = logging.getLogger(__name__)


class DeliveryRouter:
    """Routes persisted messages to online, room-subscribed recipients."""

    def __init__(self, presence: PresenceRegistry, store: MessageStore) -> None:
        self.presence = presence
        self.store = store

    async def route(self, message: Message, recipient_ids: Iterable[str]) -> DeliverySummary:
        """Deliver ``message`` to every live recipient concurrently.

        Args:
            message: The persisted message (must carry its store id).
            recipient_ids: Chat members other than the sender.

        Returns:
            DeliverySummary with the number of recipients reached (push and
            store update both succeeded) out of the total.
        """
        recipients: List[str] = list(dict.fromkeys(recipient_ids))
        if not recipients:
            return DeliverySummary(deliveredCount=0, totalRecipients=0)

        results = await asyncio.gather(
            *[self._deliver_to(recipient, message) for recipient in recipients],
            return_exceptions=True
        )

        delivered = 0
        for recipient, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.error(f"[Router] Unexpected error delivering message {message.id} to {recipient}: {result}")
            elif result:
                delivered += 1

        logger.info(
            f"[Router] Message {message.id} delivered to {delivered}/{len(recipients)} online recipients"
        )
        if delivered == 0:
            logger.info(f"[Router] Message {message.id} stored as offline message")

        return DeliverySummary(deliveredCount=delivered, totalRecipients=len(recipients))

    def deliverable_session(self, recipient_id: str, chat_id: str) -> Optional[ConnectionSession]:
        """Return the recipient's session if it can take the message right now."""
        session = self.presence.lookup(recipient_id)
        if session is None:
            return None
        if not session.is_subscribed(chat_id):
            return None
        return session

    async def _deliver_to(self, recipient_id: str, message: Message) -> bool:
        session = self.deliverable_session(recipient_id, message.chatId)
        if session is None:
            return False

        if not await session.push("message", message):
            # Disconnect raced the push; counted as undeliverable
            return False

        try:
            await self.store.mark_delivered(message.id)
        except StoreUnavailable as e:
            logger.error(f"[Router] Error marking message {message.id} as delivered: {e}")
            return False
        return True
