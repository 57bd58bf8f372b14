"""Chat manager: per-connection event handling for real-time delivery.

This module wires the presence registry, live connection sessions, message
store, delivery router and backlog dispatcher together. The WebSocket
endpoint only authenticates and pumps frames; everything else happens here.

Key features:
    - Last-connect-wins presence with compare-and-remove disconnect
    - Backlog drain on connect (single ``offline_messages`` batch)
    - Room subscriptions with join / leave / typing fan-out
    - Persist-then-route message sending with a delivery summary
    - Independent delivered / read acknowledgements
    - Store failures contained to the event that hit them

Concurrency:
    One task per connection runs its events sequentially; tasks for
    different connections interleave freely on the event loop. Store calls
    are awaited, so a slow store only suspends the handler that made the
    call. The presence registry guards its own writes.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Hashable, List, Optional, Set

from pydantic import ValidationError

from app.config import AppConfig, get_config

from .backlog import BacklogDispatcher
from .delivery import DeliveryRouter
from .errors import StoreUnavailable
from .presence import PresenceRegistry
from .schemas import (
    AckEvent,
    AckKind,
    ErrorEvent,
    JoinEvent,
    LeaveEvent,
    Message,
    MessageSentEvent,
    RoomActivityEvent,
    SendMessageEvent,
    StopTypingEvent,
    TypingEvent,
    parse_inbound,
)
from .session import ConnectionSession, Transport
from .store import InMemoryMessageStore, MessageStore

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Cap for the REST history query
DEFAULT_HISTORY_LIMIT = 200

# Error reasons sent to clients
REASON_MESSAGE_FAILED = "message_failed"
REASON_INVALID_EVENT = "invalid_event"


class ChatManager:
    """Owns all live sessions and routes their events.

    Attributes:
        store: Message store gateway.
        presence: user id -> addressable session.
        sessions: Every open session, superseded ones included, for room
            fan-out.
        router: Push-now vs. leave-pending decisions for new messages.
        backlog: Drains undelivered messages on connect.
        history_limit: Maximum messages returned by ``fetch_history``.
    """

    def __init__(
        self,
        store: MessageStore,
        presence: Optional[PresenceRegistry] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.store = store
        self.presence: PresenceRegistry = presence or PresenceRegistry()
        self.sessions: Set[ConnectionSession] = set()
        self.router = DeliveryRouter(self.presence, store)
        self.backlog = BacklogDispatcher(store)
        self.history_limit = history_limit

        self._handlers: Dict[type, Callable[[ConnectionSession, Any], Any]] = {
            JoinEvent: self._on_join,
            LeaveEvent: self._on_leave,
            TypingEvent: self._on_typing,
            StopTypingEvent: self._on_stop_typing,
            SendMessageEvent: self.send_message,
            AckEvent: self.acknowledge,
        }

    @classmethod
    def from_config(cls, config: AppConfig) -> "ChatManager":
        return cls(build_store(config), history_limit=config.chat.history_limit)

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    async def connect(self, user_id: Hashable, transport: Transport) -> ConnectionSession:
        """Register a verified connection and drain its backlog.

        Args:
            user_id: Identity supplied by the authentication step.
            transport: Accepted socket-like object.

        Returns:
            The new session, already addressable through presence.

        If registration or the drain is interrupted, the session is
        unregistered before the error propagates.
        """
        user_id = str(user_id)
        session = ConnectionSession(user_id, transport)
        self.sessions.add(session)
        try:
            await self.presence.set_online(user_id, session)
            await self.backlog.drain(user_id, session)
        except BaseException:
            await self.disconnect(session)
            raise
        return session

    async def disconnect(self, session: ConnectionSession) -> None:
        """Forget a closed session.

        Only removes the presence mapping if it still points at this
        session; a newer connection from the same user is left alone.
        """
        session.mark_closed()
        self.sessions.discard(session)
        await self.presence.set_offline(session.user_id, session)

    # =========================================================================
    # Event Dispatch
    # =========================================================================

    async def handle_event(self, session: ConnectionSession, data: Any) -> None:
        """Validate one raw inbound frame and run its handler."""
        try:
            event = parse_inbound(data)
        except ValidationError as e:
            kind = data.get("type", "?") if isinstance(data, dict) else "?"
            logger.warning(f"[WS] Invalid event from user {session.user_id}: type={kind} ({e.error_count()} errors)")
            await self.send_error(session, REASON_INVALID_EVENT)
            return

        logger.debug(f"[WS] User {session.user_id} event: type={event.type}")
        await self._handlers[type(event)](session, event)

    async def send_error(self, session: ConnectionSession, reason: str) -> None:
        event = ErrorEvent(reason=reason)
        await session.push(event.type, event)

    # =========================================================================
    # Rooms
    # =========================================================================

    async def _on_join(self, session: ConnectionSession, event: JoinEvent) -> None:
        session.join(event.chatId)
        logger.info(
            f"[WS] User {session.user_id} joined chat:{event.chatId}. "
            f"Total users in chat:{event.chatId} = {self.get_room_size(event.chatId)}"
        )
        await self._notify_room(session, "user_joined", event.chatId)

    async def _on_leave(self, session: ConnectionSession, event: LeaveEvent) -> None:
        session.leave(event.chatId)
        await self._notify_room(session, "user_left", event.chatId)

    async def _on_typing(self, session: ConnectionSession, event: TypingEvent) -> None:
        await self._notify_room(session, "user_typing", event.chatId)

    async def _on_stop_typing(self, session: ConnectionSession, event: StopTypingEvent) -> None:
        await self._notify_room(session, "user_stop_typing", event.chatId)

    async def _notify_room(self, session: ConnectionSession, kind: str, chat_id: str) -> None:
        event = RoomActivityEvent(type=kind, userId=session.user_id, chatId=chat_id)
        await self.broadcast_except(event, chat_id, exclude=session)

    async def broadcast_except(
        self, event: RoomActivityEvent, room_id: str, exclude: ConnectionSession
    ) -> None:
        """Push an event to every other session subscribed to a room concurrently.

        Sessions whose push fails are dropped from the live set; presence
        cleanup still happens through their own disconnect.
        """
        targets = [
            s for s in list(self.sessions)
            if s is not exclude and s.is_subscribed(room_id)
        ]
        if not targets:
            return

        results = await asyncio.gather(
            *[s.push(event.type, event) for s in targets],
            return_exceptions=True
        )

        failed = [s for s, ok in zip(targets, results) if ok is not True]
        for s in failed:
            self.sessions.discard(s)
            logger.debug(f"Removed dead connection of user {s.user_id} from live sessions")

    def get_room_size(self, room_id: str) -> int:
        """Number of live sessions subscribed to a room."""
        return sum(1 for s in list(self.sessions) if s.is_subscribed(room_id))

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(self, session: ConnectionSession, event: SendMessageEvent) -> None:
        """Persist a message, route it, and confirm to the sender.

        A store failure while persisting or looking up members aborts the
        send and reports ``message_failed`` to the sender only.
        """
        sender_id = session.user_id
        try:
            message = await self.store.create(event.chatId, sender_id, event.body)
            members = await self.store.fetch_members(event.chatId)
        except StoreUnavailable as e:
            logger.error(f"[WS] send_message error for user {sender_id} in chat {event.chatId}: {e}")
            await self.send_error(session, REASON_MESSAGE_FAILED)
            return

        logger.info(f"[WS] Message sent by user {sender_id} to chat {event.chatId}: {event.body[:50]!r}")

        recipients = [m for m in members if m != sender_id]
        summary = await self.router.route(message, recipients)

        confirmation = MessageSentEvent(
            tempId=event.tempId,
            id=message.id,
            message=message,
            deliveredCount=summary.deliveredCount,
            totalRecipients=summary.totalRecipients,
        )
        await session.push(confirmation.type, confirmation)

    async def acknowledge(self, session: ConnectionSession, event: AckEvent) -> None:
        """Apply a delivered / read ack. Order between the two is not enforced."""
        try:
            if event.kind == AckKind.DELIVERED:
                await self.store.mark_delivered(event.messageId)
            else:
                await self.store.mark_read(event.messageId)
        except StoreUnavailable as e:
            logger.error(f"[WS] ack error for message {event.messageId} from user {session.user_id}: {e}")

    async def fetch_history(self, chat_id: str, limit: Optional[int] = None) -> List[Message]:
        """Most recent messages of a chat, oldest first. Never mutates flags."""
        if limit is None or limit > self.history_limit:
            limit = self.history_limit
        return await self.store.fetch_history(chat_id, limit)

    def close(self) -> None:
        self.store.close()


# =============================================================================
# Store Factory
# =============================================================================


def build_store(config: AppConfig) -> MessageStore:
    """Create the message store selected by ``store.backend``."""
    if config.store.backend == "memory":
        logger.info("[Store] Using in-memory message store")
        return InMemoryMessageStore()

    from .duckdb_store import DuckDBMessageStore
    return DuckDBMessageStore(
        db_path=config.store.db_path,
        timeout_seconds=config.store.timeout_seconds,
    )


# Process-scoped instance; reset on restart
_manager: Optional[ChatManager] = None


def get_chat_manager() -> ChatManager:
    """Return the active chat manager, building it from config on first use."""
    global _manager
    if _manager is None:
        _manager = ChatManager.from_config(get_config())
    return _manager


def set_chat_manager(manager: Optional[ChatManager]) -> None:
    """Install (or clear, with None) the active chat manager."""
    global _manager
    _manager = manager
