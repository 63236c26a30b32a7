"""
Audit Log Ring Buffer
=====================

Bounded in-memory log of authentication events, newest first, served by
the /auth/logs endpoint. Each entry is also written to the
``authserver.audit`` logger.

The buffer is observability only: append() never raises, so a fault in
here can never change the outcome of a request.
"""

import logging
import threading
from collections import deque
from typing import Any, Deque, List, Mapping, Optional, Union

from ..models import AuditEntry, utcnow

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authserver.audit")

MAX_LOGS = 100

_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class AuditLog:
    """Thread-safe ring buffer of AuditEntry objects."""

    def __init__(self, capacity: int = MAX_LOGS):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._entries: Deque[AuditEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def append(self, entry: Union[AuditEntry, Mapping[str, Any]]) -> Optional[AuditEntry]:
        """
        Stamp an entry with the server time and insert it at the front.

        The oldest entry is dropped once the buffer is full.

        Returns:
            The stored entry, or None if the entry could not be recorded
        """
        try:
            if isinstance(entry, AuditEntry):
                stamped = entry.model_copy(update={"timestamp": utcnow()})
            else:
                stamped = AuditEntry.model_validate({**entry, "timestamp": utcnow()})

            with self._lock:
                self._entries.appendleft(stamped)

            audit_logger.log(
                _LEVELS[stamped.level],
                stamped.message,
                extra={
                    "user_id": stamped.user_id,
                    "email": stamped.email,
                    "error": stamped.error,
                    "ip": stamped.ip,
                },
            )
            return stamped
        except Exception as e:
            logger.error(f"Failed to record audit entry: {e}", exc_info=True)
            return None

    def info(self, message: str, **context: Any) -> Optional[AuditEntry]:
        return self.append({"level": "info", "message": message, **context})

    def warn(self, message: str, **context: Any) -> Optional[AuditEntry]:
        return self.append({"level": "warn", "message": message, **context})

    def error(self, message: str, **context: Any) -> Optional[AuditEntry]:
        return self.append({"level": "error", "message": message, **context})

    def list(self) -> List[AuditEntry]:
        """Snapshot of the buffer, newest first."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
