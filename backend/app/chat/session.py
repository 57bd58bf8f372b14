"""Connection session: one live transport connection and its room set.

A session wraps anything that can ``send_json`` (a FastAPI ``WebSocket`` in
production, a fake in tests) and tracks which chat rooms it has joined.
Sessions are ephemeral and never persisted.
"""
import logging
from typing import Any, Hashable, Protocol, Set

from pydantic import BaseModel
from starlette.websockets import WebSocketState

from .errors import TransportClosed

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionSession:
    """State for a single live connection.

    Attributes:
        user_id: Verified identity that owns this connection.
        transport: Underlying socket-like object.
        rooms: Chat room ids this connection is subscribed to.
        closed: Set once the transport is known to be gone.
    """

    def __init__(self, user_id: Hashable, transport: Transport) -> None:
        self.user_id = user_id
        self.transport = transport
        self.rooms: Set[Hashable] = set()
        self.closed = False

    def __repr__(self) -> str:
        return f"ConnectionSession(user_id={self.user_id!r}, rooms={sorted(map(str, self.rooms))})"

    # =========================================================================
    # Room Membership
    # =========================================================================

    def join(self, room_id: Hashable) -> None:
        self.rooms.add(room_id)

    def leave(self, room_id: Hashable) -> None:
        self.rooms.discard(room_id)

    def is_subscribed(self, room_id: Hashable) -> bool:
        return room_id in self.rooms

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, frame: dict) -> None:
        """Send a raw frame.

        Raises:
            TransportClosed: If the transport is closed or the send fails.
        """
        if self.closed:
            raise TransportClosed(f"connection for user {self.user_id} is closed")
        state = getattr(self.transport, "application_state", None)
        if state is not None and state != WebSocketState.CONNECTED:
            self.closed = True
            raise TransportClosed(f"connection for user {self.user_id} is {state.name}")
        try:
            await self.transport.send_json(frame)
        except Exception as e:
            self.closed = True
            raise TransportClosed(str(e)) from e

    async def push(self, event_name: str, payload: Any) -> bool:
        """Best-effort send of ``{"type": event_name, **payload}``.

        A disconnect may be racing the push, so a closed transport is
        reported as ``False`` rather than raised.

        Returns:
            True if the frame was handed to the transport, False otherwise.
        """
        if isinstance(payload, BaseModel):
            frame = payload.model_dump(mode="json")
        else:
            frame = dict(payload)
        frame["type"] = event_name
        try:
            await self.send(frame)
            return True
        except TransportClosed as e:
            logger.debug(f"Failed to push {event_name} to user {self.user_id}: {e}")
            return False

    def mark_closed(self) -> None:
        self.closed = True
