"""Auth router for the demo login endpoint.

Endpoints:
    POST /auth/login - Exchange a user id for a signed login token
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.chat.schemas import Identifier

from .service import get_token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    """Request body for the login stub."""
    userId: Optional[Identifier] = None


@router.post("/login")
async def login(request: LoginRequest) -> dict:
    """Return a token for ``userId``.

    No credential check happens here; the token only pins the identity
    that the WebSocket endpoint will trust.
    """
    if not request.userId:
        raise HTTPException(status_code=400, detail="userId required")

    token = get_token_service().issue(request.userId)
    logger.info(f"[Auth] Issued token for user {request.userId}")
    return {"token": token}
