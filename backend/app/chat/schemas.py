"""Pydantic schemas for chat messages and the WebSocket wire protocol.

Every frame exchanged over the socket is a JSON object tagged by ``type``.
Inbound frames are parsed into a discriminated union so the manager can
dispatch on the concrete event class instead of on raw dict keys.

Inbound (client -> server):
    - join / leave: subscribe to or unsubscribe from a chat room
    - typing / stop_typing: typing indicator for a room
    - send_message: persist and route a new message
    - ack: delivered / read acknowledgement for a message id

Outbound (server -> client):
    - message, offline_messages, message_sent
    - user_joined, user_left, user_typing, user_stop_typing
    - error
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, Field, TypeAdapter


def _as_identifier(value: Any) -> Any:
    # 10 and "10" must name the same chat / user
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return str(value)
    return value


Identifier = Annotated[str, BeforeValidator(_as_identifier)]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Domain Models
# =============================================================================


class AckKind(str, Enum):
    """Kind of client acknowledgement.

    Attributes:
        DELIVERED: The client received the message.
        READ: The user has seen the message.
    """
    DELIVERED = "delivered"
    READ = "read"


class Message(BaseModel):
    """A persisted chat message.

    ``delivered`` and ``read`` are independent flags. ``read`` may be set
    while ``delivered`` is still false; nothing here ties them together.
    ``delivered`` is a single chat-wide flag, not a per-recipient receipt.

    Attributes:
        id: Store-assigned, monotonically increasing message id.
        chatId: Chat the message belongs to.
        senderId: Identity of the sender.
        body: Opaque message text.
        createdAt: Creation time (UTC).
        delivered: True once any recipient got it and the store recorded it.
        read: True once a client acknowledged reading it.
    """
    id: int = Field(..., description="Store-assigned message id")
    chatId: Identifier = Field(..., description="Chat id")
    senderId: Identifier = Field(..., description="Sender user id")
    body: str = Field(..., description="Message text")
    createdAt: datetime = Field(default_factory=_utcnow, description="Creation time (UTC)")
    delivered: bool = Field(default=False, description="Delivered flag")
    read: bool = Field(default=False, description="Read flag")


class DeliverySummary(BaseModel):
    """Outcome of routing one message to a chat's recipients."""
    deliveredCount: int = 0
    totalRecipients: int = 0


# =============================================================================
# Inbound Events
# =============================================================================


class JoinEvent(BaseModel):
    type: Literal["join"] = "join"
    chatId: Identifier


class LeaveEvent(BaseModel):
    type: Literal["leave"] = "leave"
    chatId: Identifier


class TypingEvent(BaseModel):
    type: Literal["typing"] = "typing"
    chatId: Identifier


class StopTypingEvent(BaseModel):
    type: Literal["stop_typing"] = "stop_typing"
    chatId: Identifier


class SendMessageEvent(BaseModel):
    """Client request to send ``body`` to ``chatId``.

    ``tempId`` is an opaque client-side id echoed back in ``message_sent``
    so the client can reconcile its optimistic copy.
    """
    type: Literal["send_message"] = "send_message"
    chatId: Identifier
    body: str
    tempId: Optional[Identifier] = None


class AckEvent(BaseModel):
    type: Literal["ack"] = "ack"
    messageId: int
    chatId: Optional[Identifier] = None
    kind: AckKind


InboundEvent = Annotated[
    Union[JoinEvent, LeaveEvent, TypingEvent, StopTypingEvent, SendMessageEvent, AckEvent],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_inbound(data: Any) -> InboundEvent:
    """Validate a raw inbound frame into its event model.

    Raises:
        pydantic.ValidationError: If the frame is not a known, well-formed event.
    """
    return _inbound_adapter.validate_python(data)


# =============================================================================
# Outbound Events
# =============================================================================


class OfflineMessagesEvent(BaseModel):
    """Backlog batch pushed once when a connection becomes active."""
    type: Literal["offline_messages"] = "offline_messages"
    totalCount: int
    messagesByChat: Dict[str, List[Message]]


class MessageSentEvent(BaseModel):
    """Confirmation sent back to the sender after routing."""
    type: Literal["message_sent"] = "message_sent"
    tempId: Optional[str] = None
    id: int
    message: Message
    deliveredCount: int
    totalRecipients: int


class RoomActivityEvent(BaseModel):
    """Join / leave / typing notification fanned out to a room."""
    type: Literal["user_joined", "user_left", "user_typing", "user_stop_typing"]
    userId: Identifier
    chatId: Identifier


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    reason: str
