"""Names, lifetimes and attributes of the cookies the auth server manages."""

from starlette.responses import Response

ACCESS_TOKEN_COOKIE = "accessToken"
USER_ID_COOKIE = "userId"
SESSION_COOKIE = "sessionId"

ACCESS_TOKEN_MAX_AGE = 7 * 24 * 60 * 60
USER_ID_MAX_AGE = 24 * 60 * 60

ALL_COOKIES = (ACCESS_TOKEN_COOKIE, USER_ID_COOKIE, SESSION_COOKIE)


class CookiePolicy:
    """
    Sets and clears auth cookies with consistent attributes.

    Every cookie is httpOnly, SameSite=strict and scoped to "/"; Secure is
    added in production. Clearing uses the same attributes so browsers
    match the cookie being removed.
    """

    def __init__(self, secure: bool = False, session_max_age: int = 24 * 60 * 60):
        self.secure = secure
        self.session_max_age = session_max_age

    def _set(self, response: Response, key: str, value: str, max_age: int) -> None:
        response.set_cookie(
            key,
            value,
            max_age=max_age,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="strict",
        )

    def set_access_token(self, response: Response, encrypted_token: str) -> None:
        self._set(response, ACCESS_TOKEN_COOKIE, encrypted_token, ACCESS_TOKEN_MAX_AGE)

    def set_user_id(self, response: Response, user_token: str) -> None:
        """Set the userId cookie to a signed token from SessionStore.issue_user_token()."""
        self._set(response, USER_ID_COOKIE, user_token, USER_ID_MAX_AGE)

    def set_session(self, response: Response, session_token: str) -> None:
        self._set(response, SESSION_COOKIE, session_token, self.session_max_age)

    def clear(self, response: Response, *names: str) -> None:
        for name in names:
            response.delete_cookie(
                name,
                path="/",
                secure=self.secure,
                httponly=True,
                samesite="strict",
            )
