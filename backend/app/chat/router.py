"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /chats/{chat_id}/messages: Recent message history
    - WebSocket /ws/chat?token=...: Real-time messaging

The WebSocket protocol supports:
    - Offline backlog delivery on connect (``offline_messages``)
    - Room join / leave notifications
    - Typing indicators
    - Message sending with delivery confirmation (``message_sent``)
    - Delivered / read acknowledgements

Protocol Message Types (client -> server):
    - join / leave: {type, chatId}
    - typing / stop_typing: {type, chatId}
    - send_message: {type, chatId, body, tempId}
    - ack: {type, messageId, chatId, kind: "delivered" | "read"}
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from app.auth.service import get_token_service

from .errors import AuthFailure, StoreUnavailable
from .manager import REASON_INVALID_EVENT, get_chat_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/chats/{chat_id}/messages")
async def get_chat_messages(
    chat_id: str,
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of messages (capped at the history limit)")
) -> JSONResponse:
    """Get the most recent messages of a chat, oldest first.

    This path does not go through delivery routing and never changes
    delivered / read flags.

    Example:
        GET /chats/10/messages
    """
    manager = get_chat_manager()
    try:
        messages = await manager.fetch_history(chat_id, limit)
    except StoreUnavailable as e:
        logger.error(f"[HTTP] History fetch failed for chat {chat_id}: {e}")
        return JSONResponse({"error": "store unavailable"}, status_code=503)

    return JSONResponse([msg.model_dump(mode="json") for msg in messages])


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Login token from POST /auth/login")
) -> None:
    """WebSocket endpoint for one authenticated client.

    Protocol Flow:
        1. Client connects with ?token=... -> rejected with 1008 if invalid
        2. Server registers presence and pushes ``offline_messages`` if the
           user has an undelivered backlog
        3. Client sends join / send_message / ack / typing frames
        4. On disconnect the presence mapping is dropped, unless a newer
           connection of the same user already replaced it
    """
    try:
        user_id = get_token_service().verify(token)
    except AuthFailure as e:
        logger.warning(f"[WS] Rejected connection: {e}")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    await websocket.accept()
    manager = get_chat_manager()
    session = None

    try:
        session = await manager.connect(user_id, websocket)
        logger.info(f"[WS] User {user_id} connected")

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

            raw = message.get("text")
            if raw is None:
                # Binary frames are not part of the protocol
                await manager.send_error(session, REASON_INVALID_EVENT)
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_error(session, REASON_INVALID_EVENT)
                continue
            await manager.handle_event(session, data)
    except WebSocketDisconnect as e:
        logger.info(f"[WS] User {user_id} disconnected (code={e.code})")
    finally:
        if session is not None:
            await manager.disconnect(session)
