"""
Token verification gate errors.

Every failure the gate can produce maps to one of these classes. The
application exception handler renders them as
``{"authenticated": false, "message": ...}`` with the class status code and
clears the cookies the class lists. Only UpstreamFault is a 500; all other
failures look the same to the client apart from their message.
"""

from typing import Optional, Tuple

from .cookies import ACCESS_TOKEN_COOKIE, USER_ID_COOKIE

SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."


class AuthGateError(Exception):
    """Base class for gate failures."""

    status_code: int = 401
    message: str = "Not authenticated."
    clear_cookies: Tuple[str, ...] = ()

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingCredential(AuthGateError):
    """No access token cookie on the request."""

    message = "No access token provided."


class MalformedCredential(AuthGateError):
    """Access token cookie could not be decrypted."""

    message = "Invalid access token format."
    clear_cookies = (ACCESS_TOKEN_COOKIE,)


class InvalidCredential(AuthGateError):
    """Provider rejected the access token, or failed while validating it."""

    message = SESSION_EXPIRED_MESSAGE


class NoRefreshPath(AuthGateError):
    """Access token is invalid and no refresh token is stored for the user."""

    message = SESSION_EXPIRED_MESSAGE


class RefreshFailure(AuthGateError):
    """Refresh call failed, returned incomplete data, or re-encryption failed."""

    message = SESSION_EXPIRED_MESSAGE
    clear_cookies = (ACCESS_TOKEN_COOKIE, USER_ID_COOKIE)


class UpstreamFault(AuthGateError):
    """Unexpected exception while verifying a request."""

    status_code = 500
    message = "Authentication verification failed."
