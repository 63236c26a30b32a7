"""
Token Verification Gate
=======================

Decides whether a request is authenticated, refreshing the access token
transparently when the provider reports it as no longer valid.

Per request:

    no cookie            -> 401 MissingCredential
    cookie won't decrypt -> 401 MalformedCredential, accessToken cleared
    provider says valid  -> authenticated, no cookie changes
    invalid, no refresh  -> 401 NoRefreshPath
    invalid, refresh ok  -> authenticated, new accessToken cookie, session updated
    invalid, refresh bad -> 401 RefreshFailure, accessToken + userId cleared,
                            stored refresh token deleted
    anything unexpected  -> 500 UpstreamFault

Refresh is attempted at most once per request and never retried.
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import Request, Response

from ..models import Principal, RefreshResult, SessionRecord, TokenValidation
from .audit import AuditLog
from .cookies import ACCESS_TOKEN_COOKIE, USER_ID_COOKIE, CookiePolicy
from .crypto import DecryptionError, TokenCipher
from .errors import (
    AuthGateError,
    InvalidCredential,
    MalformedCredential,
    MissingCredential,
    NoRefreshPath,
    RefreshFailure,
    UpstreamFault,
)
from .provider import IdentityProvider
from .session import SessionHandle, SessionStore
from .store import RefreshTokenStore

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> Optional[str]:
    """Source IP of a request, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class TokenVerificationGate:
    """
    Request-time verification and refresh of the encrypted access token.

    All collaborators are injected so each app instance (and each test)
    owns its own state.
    """

    def __init__(
        self,
        cipher: TokenCipher,
        refresh_tokens: RefreshTokenStore,
        audit_log: AuditLog,
        sessions: SessionStore,
        provider: IdentityProvider,
        cookies: CookiePolicy,
        provider_timeout: float = 10.0,
    ):
        self._cipher = cipher
        self._refresh_tokens = refresh_tokens
        self._audit = audit_log
        self._sessions = sessions
        self._provider = provider
        self._cookies = cookies
        self._timeout = provider_timeout

    async def verify(self, request: Request, response: Response) -> Optional[Principal]:
        """
        Authenticate a request.

        Cookie changes from a successful refresh are written to ``response``.

        Returns:
            The authenticated principal (None if neither the provider nor
            the session knows the user)

        Raises:
            AuthGateError: When the request is rejected
        """
        ip = client_ip(request)
        try:
            return await self._verify(request, response, ip)
        except AuthGateError:
            raise
        except Exception as e:
            logger.error(f"Auth gate error: {e}", exc_info=True)
            self._audit.error("Authentication verification failed", error=str(e), ip=ip)
            raise UpstreamFault() from e

    async def _verify(self, request: Request, response: Response, ip: Optional[str]) -> Optional[Principal]:
        encrypted_access_token = request.cookies.get(ACCESS_TOKEN_COOKIE)
        if not encrypted_access_token:
            self._audit.warn("No access token provided", ip=ip)
            raise MissingCredential()

        try:
            access_token = self._cipher.open(encrypted_access_token)
        except DecryptionError as e:
            self._audit.error("Access token decryption failed", error=str(e), ip=ip)
            raise MalformedCredential() from e

        session = self._sessions.load(request)

        try:
            return await self._validate(access_token, session, ip)
        except InvalidCredential:
            pass

        user_id = (session.record.user_id if session else None) or self._sessions.resolve_user_id(
            request.cookies.get(USER_ID_COOKIE)
        )
        if not user_id or self._refresh_tokens.get(user_id) is None:
            self._audit.warn("No refresh token available", user_id=user_id, ip=ip)
            raise NoRefreshPath()

        return await self._refresh(request, response, user_id, ip)

    async def _validate(
        self,
        access_token: str,
        session: Optional[SessionHandle],
        ip: Optional[str],
    ) -> Optional[Principal]:
        """
        Ask the provider whether the access token is still good.

        Provider faults and timeouts count as an invalid token.

        Raises:
            InvalidCredential: If the token is not valid
        """
        try:
            raw = await self._call_provider(self._provider.validate_access_token(access_token))
            validation = TokenValidation.model_validate(raw)
        except Exception as e:
            logger.warning(f"Access token validation failed: {e}")
            self._audit.warn("Access token validation failed", error=str(e) or type(e).__name__, ip=ip)
            raise InvalidCredential() from e

        if not validation.valid:
            raise InvalidCredential()

        principal = validation.user or (session.record.user if session else None)
        self._audit.info(
            "Access token validated",
            user_id=principal.stable_id if principal else None,
            email=principal.email if principal else None,
            ip=ip,
        )
        return principal

    async def _refresh(
        self,
        request: Request,
        response: Response,
        user_id: str,
        ip: Optional[str],
    ) -> Optional[Principal]:
        async with self._refresh_tokens.lock(user_id):
            # A concurrent request may have rotated or dropped the token while we waited
            stored_refresh_token = self._refresh_tokens.get(user_id)
            if stored_refresh_token is None:
                self._audit.warn("No refresh token available", user_id=user_id, ip=ip)
                raise NoRefreshPath()

            logger.info(f"Attempting to refresh token for user {user_id}")
            try:
                raw = await self._call_provider(self._provider.refresh_access_token(stored_refresh_token))
                result = RefreshResult.model_validate(raw)

                if result.refresh_token:
                    self._refresh_tokens.set(user_id, result.refresh_token)

                encrypted_access_token = self._cipher.encrypt(result.access_token)
                if not encrypted_access_token:
                    raise ValueError("Failed to encrypt new access token")
            except Exception as e:
                logger.error(f"Token refresh failed for user {user_id}: {e}")
                self._audit.error(
                    "Token refresh failed",
                    user_id=user_id,
                    error=str(e) or type(e).__name__,
                    ip=ip,
                )
                self._refresh_tokens.delete(user_id)
                raise RefreshFailure() from e

            self._cookies.set_access_token(response, encrypted_access_token)
            principal = self._update_session(request, response, user_id, result)

        self._audit.info(
            "Token refreshed",
            user_id=user_id,
            email=principal.email if principal else None,
            ip=ip,
        )
        return principal

    def _update_session(
        self,
        request: Request,
        response: Response,
        user_id: str,
        result: RefreshResult,
    ) -> Optional[Principal]:
        session = self._sessions.load(request)

        if session is None:
            record = SessionRecord(user=result.user, id_token=result.id_token, user_id=user_id)
            _, session_token = self._sessions.create(record)
            self._cookies.set_session(response, session_token)
            return record.user

        current = session.record
        record = current.evolve(
            user=result.user or current.user,
            id_token=result.id_token or current.id_token,
            user_id=user_id,
        )
        self._sessions.replace(session.sid, record)
        return record.user

    async def _call_provider(self, call: Any) -> Any:
        return await asyncio.wait_for(call, timeout=self._timeout)


async def require_principal(request: Request, response: Response) -> Optional[Principal]:
    """
    FastAPI dependency guarding a route with the token verification gate.

    Usage in routes:
        @router.get("/me")
        async def me(user: Optional[Principal] = Depends(require_principal)):
            ...
    """
    gate: TokenVerificationGate = request.app.state.app_state.gate
    return await gate.verify(request, response)
