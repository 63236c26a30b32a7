"""
Refresh Token Store
===================

Process-local mapping from user identifier to that user's refresh token.

Refresh tokens live only in this process, so they are lost on restart and
are not shared between workers. Anything exposing the same get/set/delete
methods (Redis, a database table) can replace it without touching the gate.
"""

import asyncio
import logging
import threading
import weakref
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    """
    Keyed store holding at most one refresh token per user.

    Also hands out one asyncio.Lock per user so that refresh attempts for the
    same user run one at a time. Locks are held weakly: a lock lives only
    while a request holds or waits on it.
    """

    def __init__(self):
        self._tokens: Dict[str, str] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._mutex = threading.Lock()

    def get(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        with self._mutex:
            return self._tokens.get(user_id)

    def set(self, user_id: str, token: str) -> None:
        """Store or rotate the refresh token for a user."""
        if not user_id or not token:
            raise ValueError("user_id and token are required")
        with self._mutex:
            rotated = user_id in self._tokens
            self._tokens[user_id] = token
        logger.debug(f"{'Rotated' if rotated else 'Stored'} refresh token for user {user_id}")

    def delete(self, user_id: Optional[str]) -> None:
        if not user_id:
            return
        with self._mutex:
            removed = self._tokens.pop(user_id, None)
        if removed is not None:
            logger.debug(f"Deleted refresh token for user {user_id}")

    def lock(self, user_id: str) -> asyncio.Lock:
        """Return the refresh lock for a user, creating it on first use."""
        with self._mutex:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[user_id] = lock
            return lock

    def clear(self) -> None:
        with self._mutex:
            self._tokens.clear()

    def __contains__(self, user_id: object) -> bool:
        with self._mutex:
            return user_id in self._tokens

    def __len__(self) -> int:
        with self._mutex:
            return len(self._tokens)
