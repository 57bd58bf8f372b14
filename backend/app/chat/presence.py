"""Presence registry: which live connection answers for a user.

At most one connection is addressable per user. A newer connection from the
same user silently supersedes the old mapping (last-connect-wins); the old
connection is not closed, it just stops being reachable through lookups.

Removal is compare-and-remove. A disconnect only clears the mapping if the
disconnecting handle is still the one on record, so a late disconnect of a
superseded connection can never evict the newer session.
"""
import asyncio
import logging
from typing import Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

H = TypeVar("H")


class PresenceRegistry(Generic[H]):
    """Concurrency-safe ``user id -> connection handle`` map.

    Writers serialize on a single ``asyncio.Lock``; the critical sections
    are plain dict operations, so unrelated users never wait on I/O here.
    Lookups are lock-free reads and never block.
    """

    def __init__(self) -> None:
        self._connections: Dict[Hashable, H] = {}
        self._lock = asyncio.Lock()

    async def set_online(self, user_id: Hashable, handle: H) -> None:
        """Map ``user_id`` to ``handle``, replacing any previous mapping."""
        async with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = handle
        if previous is not None and previous is not handle:
            logger.info(f"[Presence] User {user_id} superseded an older connection")
        logger.info(f"[Presence] User {user_id} is online. Total online users: {len(self._connections)}")

    async def set_offline(self, user_id: Hashable, handle: H) -> bool:
        """Remove the mapping only if ``handle`` is still the current one.

        Returns:
            True if the mapping was removed, False if it was absent or
            already points at a newer connection.
        """
        async with self._lock:
            if self._connections.get(user_id) is not handle:
                logger.debug(f"[Presence] Ignored stale disconnect for user {user_id}")
                return False
            del self._connections[user_id]
        logger.info(f"[Presence] User {user_id} is offline. Total online users: {len(self._connections)}")
        return True

    def lookup(self, user_id: Hashable) -> Optional[H]:
        return self._connections.get(user_id)

    def is_online(self, user_id: Hashable) -> bool:
        return user_id in self._connections

    def online_count(self) -> int:
        return len(self._connections)
