"""
Server-side Session Management Module
=====================================

Sessions are stored server-side as versioned SessionRecord objects keyed by
an opaque session id. The browser only holds that id, wrapped in a signed
HS256 JWT so a forged or expired cookie resolves to "no session" without a
store lookup.

- create() mints a session id, stores the first record and returns the
  signed cookie value
- load() resolves the session cookie of a request
- replace() is the only way to change a stored record
- destroy() removes a session at logout
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from starlette.requests import Request

from ..models import SessionRecord
from .cookies import SESSION_COOKIE, USER_ID_MAX_AGE

logger = logging.getLogger(__name__)

SESSION_ISSUER = "authserver"
SESSION_ALGORITHM = "HS256"
USER_TOKEN_TYPE = "uid"


# =============================================================================
# Exceptions
# =============================================================================

class SessionError(Exception):
    """Base exception for session errors"""
    pass


class StaleSessionError(SessionError):
    """Raised when replace() is given a record that is not the next version"""
    pass


@dataclass(frozen=True)
class SessionHandle:
    """A resolved session: its id and the record stored for it."""

    sid: str
    record: SessionRecord


# =============================================================================
# Session Store
# =============================================================================

class SessionStore:
    """
    In-memory session store with TTL expiry.

    Args:
        secret: Key for signing session cookies
        ttl_seconds: Lifetime of a session and of its cookie
        cookie_name: Name of the session cookie
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 24 * 60 * 60,
        cookie_name: str = SESSION_COOKIE,
    ):
        if not secret:
            raise SessionError("Session secret not configured")
        self._secret = secret
        self._ttl = timedelta(seconds=ttl_seconds)
        self.cookie_name = cookie_name
        self._records: Dict[str, Tuple[SessionRecord, datetime]] = {}
        self._mutex = threading.Lock()

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    # -------------------------------------------------------------------------
    # Cookie tokens
    # -------------------------------------------------------------------------

    def issue_token(self, sid: str) -> str:
        """
        Create the signed cookie value for a session id.

        Raises:
            SessionError: If the token cannot be created
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sid": sid,
            "iat": now,
            "exp": now + self._ttl,
            "iss": SESSION_ISSUER,
        }
        try:
            return jwt.encode(payload, self._secret, algorithm=SESSION_ALGORITHM)
        except Exception as e:
            logger.error(f"Failed to create session token: {e}", exc_info=True)
            raise SessionError(f"Failed to create session token: {str(e)}") from e

    def resolve_sid(self, token: Optional[str]) -> Optional[str]:
        """
        Verify a session cookie value and return the session id it carries.

        Returns None for a missing, forged, expired or foreign token.
        """
        if not token:
            return None

        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=SESSION_ISSUER,
                options={"require": ["exp", "iat", "iss", "sid"]},
            )
        except ExpiredSignatureError:
            logger.debug("Session token expired")
            return None
        except InvalidTokenError as e:
            logger.warning(f"Invalid session token: {e}")
            return None

        sid = decoded.get("sid")
        return sid if isinstance(sid, str) and sid else None

    def issue_user_token(self, user_id: str) -> str:
        """
        Create the signed value of the userId cookie.

        Raises:
            SessionError: If the token cannot be created
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "typ": USER_TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(seconds=USER_ID_MAX_AGE),
            "iss": SESSION_ISSUER,
        }
        try:
            return jwt.encode(payload, self._secret, algorithm=SESSION_ALGORITHM)
        except Exception as e:
            logger.error(f"Failed to create user id token: {e}", exc_info=True)
            raise SessionError(f"Failed to create user id token: {str(e)}") from e

    def resolve_user_id(self, token: Optional[str]) -> Optional[str]:
        """
        Verify a userId cookie value and return the user id it carries.

        Returns None for a missing, forged, expired or plaintext value, and
        for a session token presented in its place.
        """
        if not token:
            return None

        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=SESSION_ISSUER,
                options={"require": ["exp", "iat", "iss", "sub", "typ"]},
            )
        except ExpiredSignatureError:
            logger.debug("User id token expired")
            return None
        except InvalidTokenError as e:
            logger.warning(f"Invalid user id token: {e}")
            return None

        if decoded.get("typ") != USER_TOKEN_TYPE:
            return None
        user_id = decoded.get("sub")
        return user_id if isinstance(user_id, str) and user_id else None

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def create(self, record: SessionRecord) -> Tuple[str, str]:
        """
        Store a new session.

        Returns:
            (session id, signed cookie value)
        """
        self.purge_expired()
        sid = secrets.token_urlsafe(32)
        with self._mutex:
            self._records[sid] = (record, self._expiry())
        logger.debug("Created session", extra={"user_id": record.user_id})
        return sid, self.issue_token(sid)

    def get(self, sid: Optional[str]) -> Optional[SessionRecord]:
        if not sid:
            return None
        with self._mutex:
            stored = self._records.get(sid)
            if stored is None:
                return None
            record, expires_at = stored
            if datetime.now(timezone.utc) >= expires_at:
                del self._records[sid]
                return None
            return record

    def replace(self, sid: str, record: SessionRecord) -> SessionRecord:
        """
        Swap the stored record for its next version.

        Raises:
            SessionError: If the session does not exist
            StaleSessionError: If record.version is not current version + 1
        """
        with self._mutex:
            stored = self._records.get(sid)
            if stored is None:
                raise SessionError("Session not found")
            current, _ = stored
            if record.version != current.version + 1:
                raise StaleSessionError(
                    f"Expected session version {current.version + 1}, got {record.version}"
                )
            self._records[sid] = (record, self._expiry())
        return record

    def destroy(self, sid: Optional[str]) -> bool:
        if not sid:
            return False
        with self._mutex:
            return self._records.pop(sid, None) is not None

    def load(self, request: Request) -> Optional[SessionHandle]:
        """Resolve the session named by the request's session cookie."""
        sid = self.resolve_sid(request.cookies.get(self.cookie_name))
        record = self.get(sid)
        if sid is None or record is None:
            return None
        return SessionHandle(sid=sid, record=record)

    def purge_expired(self) -> int:
        """Drop expired sessions. Returns how many were removed."""
        now = datetime.now(timezone.utc)
        with self._mutex:
            expired = [sid for sid, (_, expires_at) in self._records.items() if now >= expires_at]
            for sid in expired:
                del self._records[sid]
        return len(expired)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._records)

    def _expiry(self) -> datetime:
        return datetime.now(timezone.utc) + self._ttl


__all__ = [
    "SessionStore",
    "SessionHandle",
    "SessionError",
    "StaleSessionError",
]
