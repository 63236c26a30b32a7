"""
Session and callback orchestration.

Owns the three moments where a session changes hands outside the gate:
redirecting to the provider, completing the authorization-code callback,
and logging out.
"""

import asyncio
import logging
from typing import Dict, Optional
from urllib.parse import quote, urlencode

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from ..models import AuthenticationResult, CallbackRequest, ErrorResponse, LogoutResponse, SessionRecord
from .audit import AuditLog
from .cookies import ALL_COOKIES, CookiePolicy
from .crypto import TokenCipher
from .gate import client_ip
from .provider import DEFAULT_SCOPES, IdentityProvider
from .session import SessionStore
from .store import RefreshTokenStore

logger = logging.getLogger(__name__)

AUTHENTICATION_FAILED = "authentication_failed"


class AuthOrchestrator:
    """
    Builds the responses for /auth, /auth/callback and /auth/logout.

    Args:
        frontend_url: Frontend origin used for post-login redirects
        redirect_uri: Redirect URI registered with the provider
        post_logout_redirect_uri: Where the provider sends users after logout
        logout_redirect: Redirect to the logout URL instead of returning JSON
    """

    def __init__(
        self,
        cipher: TokenCipher,
        refresh_tokens: RefreshTokenStore,
        audit_log: AuditLog,
        sessions: SessionStore,
        provider: IdentityProvider,
        cookies: CookiePolicy,
        frontend_url: str,
        redirect_uri: str,
        post_logout_redirect_uri: str,
        logout_redirect: bool = False,
        provider_timeout: float = 10.0,
    ):
        self._cipher = cipher
        self._refresh_tokens = refresh_tokens
        self._audit = audit_log
        self._sessions = sessions
        self._provider = provider
        self._cookies = cookies
        self._frontend_url = frontend_url.rstrip("/")
        self._redirect_uri = redirect_uri
        self._post_logout_redirect_uri = post_logout_redirect_uri
        self._logout_redirect = logout_redirect
        self._timeout = provider_timeout

    # =========================================================================
    # Authorization redirect
    # =========================================================================

    def authorize(self, request: Request) -> Response:
        """Redirect the browser to the provider's authorization endpoint."""
        ip = client_ip(request)
        try:
            authorization_url = self._provider.authorization_url(
                self._redirect_uri,
                scopes=DEFAULT_SCOPES,
            )
        except Exception as e:
            logger.error(f"Failed to build authorization URL: {e}", exc_info=True)
            self._audit.error("Failed to build authorization URL", error=str(e), ip=ip)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error="authorization_failed", message=str(e)).model_dump(exclude_none=True),
            )

        self._audit.info("Redirecting to identity provider", ip=ip)
        return RedirectResponse(url=authorization_url, status_code=302)

    # =========================================================================
    # Callback
    # =========================================================================

    async def callback(self, request: Request, payload: CallbackRequest) -> Response:
        """
        Complete the authorization-code flow.

        On success the session, stored refresh token and cookies are created
        and the browser is sent to the dashboard. Every failure redirects to
        the frontend root with an ``error`` query parameter and creates
        nothing.
        """
        ip = client_ip(request)

        if payload.error:
            self._audit.warn(
                "Identity provider returned an error",
                error=payload.error_description or payload.error,
                ip=ip,
            )
            return self._frontend_redirect({
                "error": payload.error,
                "error_description": payload.error_description or "",
            })

        if not payload.code:
            self._audit.error("Callback without authorization code", ip=ip)
            return self._failure_redirect()

        try:
            raw = await asyncio.wait_for(
                self._provider.exchange_code(payload.code, self._redirect_uri),
                timeout=self._timeout,
            )
            result = AuthenticationResult.model_validate(raw)
        except Exception as e:
            logger.error(f"Code exchange failed: {e}")
            self._audit.error("Authorization code exchange failed", error=str(e) or type(e).__name__, ip=ip)
            return self._failure_redirect()

        user = result.user
        user_id = user.stable_id
        if not user_id:
            self._audit.error("Provider returned a user without id or email", ip=ip)
            return self._failure_redirect()

        encrypted_access_token = self._cipher.encrypt(result.access_token)
        if not encrypted_access_token:
            self._audit.error("Failed to encrypt access token", user_id=user_id, email=user.email, ip=ip)
            return self._failure_redirect()

        previous = self._sessions.load(request)
        if previous is not None:
            self._sessions.destroy(previous.sid)
            previous_user_id = previous.record.user_id
            if previous_user_id and previous_user_id != user_id:
                self._refresh_tokens.delete(previous_user_id)
                logger.info(f"Revoked refresh token of previous user {previous_user_id}")

        _, session_token = self._sessions.create(
            SessionRecord(user=user, id_token=result.id_token, user_id=user_id)
        )

        if result.refresh_token:
            self._refresh_tokens.set(user_id, result.refresh_token)
        else:
            logger.warning(f"No refresh token issued for user {user_id}")

        response = RedirectResponse(url=f"{self._frontend_url}/dashboard", status_code=302)
        self._cookies.set_access_token(response, encrypted_access_token)
        self._cookies.set_user_id(response, self._sessions.issue_user_token(user_id))
        self._cookies.set_session(response, session_token)

        self._audit.info("User authenticated", user_id=user_id, email=user.email, ip=ip)
        return response

    # =========================================================================
    # Logout
    # =========================================================================

    def logout(self, request: Request) -> Response:
        """
        Tear down local auth state and hand back the provider logout URL.

        Best-effort: cookies are always cleared, even if the provider
        cannot produce a logout URL.
        """
        ip = client_ip(request)
        session = self._sessions.load(request)

        user_id = session.record.user_id if session else None
        id_token = session.record.id_token if session else None
        email = session.record.user.email if session and session.record.user else None

        self._refresh_tokens.delete(user_id)
        if session is not None:
            self._sessions.destroy(session.sid)

        logout_url: Optional[str] = None
        try:
            logout_url = self._provider.logout_url(id_token, self._post_logout_redirect_uri)
        except Exception as e:
            logger.error(f"Failed to build logout URL: {e}", exc_info=True)
            self._audit.error("Failed to build logout URL", user_id=user_id, error=str(e), ip=ip)

        if self._logout_redirect and logout_url:
            response: Response = RedirectResponse(url=logout_url, status_code=302)
        else:
            response = JSONResponse(
                content=LogoutResponse(logout_url=logout_url).model_dump(by_alias=True)
            )
        self._cookies.clear(response, *ALL_COOKIES)

        self._audit.info("User logged out", user_id=user_id, email=email, ip=ip)
        return response

    # =========================================================================
    # Helpers
    # =========================================================================

    def _frontend_redirect(self, params: Dict[str, str]) -> RedirectResponse:
        query = urlencode(params, quote_via=quote)
        return RedirectResponse(url=f"{self._frontend_url}?{query}", status_code=302)

    def _failure_redirect(self) -> RedirectResponse:
        return self._frontend_redirect({"error": AUTHENTICATION_FAILED})
