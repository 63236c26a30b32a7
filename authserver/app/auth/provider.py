"""
Identity provider boundary.

This module handles:
- The IdentityProvider interface the gate and orchestrator depend on
- A Scalekit client that talks to the environment's OAuth endpoints
- Fetching and caching the provider JWKS (JSON Web Key Set)
- Verifying provider-issued JWTs and mapping their claims to a Principal

Everything returned across this boundary is a validated pydantic model from
``models.py``; a structurally invalid provider response raises instead of
leaking partial data into the caller.
"""

import logging
import time
from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwk, jwt

from ..models import AuthenticationResult, Principal, RefreshResult, TokenValidation

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("openid", "profile", "email", "offline_access")


class ProviderError(Exception):
    """Raised when the identity provider rejects a request or answers garbage."""


# =============================================================================
# Interface
# =============================================================================

@runtime_checkable
class IdentityProvider(Protocol):
    """Capabilities the auth server needs from an identity provider."""

    def authorization_url(
        self,
        redirect_uri: str,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        state: Optional[str] = None,
    ) -> str: ...

    async def exchange_code(self, code: str, redirect_uri: str) -> AuthenticationResult: ...

    async def validate_access_token(self, token: str) -> TokenValidation: ...

    async def refresh_access_token(self, refresh_token: str) -> RefreshResult: ...

    def logout_url(
        self,
        id_token_hint: Optional[str],
        post_logout_redirect_uri: str,
    ) -> str: ...

    async def aclose(self) -> None: ...


# =============================================================================
# Claims Helpers
# =============================================================================

def extract_email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    """
    Extract email address from token claims.

    Providers may use different claim names depending on configuration.

    Returns:
        Email address if found, None otherwise
    """
    for claim_name in ["email", "preferred_username", "upn"]:
        email = claims.get(claim_name)
        if isinstance(email, str) and "@" in email:
            return email.lower().strip()

    return None


def get_user_display_name(claims: Dict[str, Any]) -> Optional[str]:
    """
    Extract user's display name from claims.

    Returns:
        Display name, a name derived from the email, or None
    """
    name = claims.get("name")
    if name:
        return name

    parts = [claims.get("given_name"), claims.get("family_name")]
    full_name = " ".join(part for part in parts if part)
    if full_name:
        return full_name

    email = extract_email_from_claims(claims)
    if email:
        return email.split("@")[0].title()

    return None


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    """Build a Principal from OIDC ID token or access token claims."""
    return Principal(
        id=claims.get("sub"),
        name=get_user_display_name(claims),
        email=extract_email_from_claims(claims),
        email_verified=claims.get("email_verified"),
        given_name=claims.get("given_name"),
        organization=claims.get("oid") or claims.get("org_id"),
        avatar=claims.get("picture"),
    )


# =============================================================================
# Scalekit Client
# =============================================================================

class ScalekitProvider:
    """
    Identity provider client for a Scalekit environment.

    Args:
        environment_url: Environment base URL, also the expected token issuer
        client_id: OAuth client id
        client_secret: OAuth client secret
        timeout: Per-request HTTP timeout in seconds
        jwks_cache_seconds: How long fetched JWKS keys stay cached
        http_client: Optional preconfigured httpx.AsyncClient
    """

    def __init__(
        self,
        environment_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        jwks_cache_seconds: int = 3600,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.environment_url = environment_url.rstrip("/")
        self.client_id = client_id
        self._client_secret = client_secret
        self._jwks_cache_seconds = jwks_cache_seconds
        self._jwks_cache: Optional[Dict[str, Any]] = None
        self._jwks_cache_time: float = 0.0
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.environment_url}/oauth/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.environment_url}/oauth/token"

    @property
    def jwks_uri(self) -> str:
        return f"{self.environment_url}/keys"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.environment_url}/oidc/logout"

    # -------------------------------------------------------------------------
    # URLs
    # -------------------------------------------------------------------------

    def authorization_url(
        self,
        redirect_uri: str,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        state: Optional[str] = None,
    ) -> str:
        if not self.environment_url or not self.client_id:
            raise ProviderError("Identity provider environment URL and client id must be configured")

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
        }
        if state:
            params["state"] = state

        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def logout_url(self, id_token_hint: Optional[str], post_logout_redirect_uri: str) -> str:
        params = {"post_logout_redirect_uri": post_logout_redirect_uri}
        if id_token_hint:
            params = {"id_token_hint": id_token_hint, **params}
        return f"{self.logout_endpoint}?{urlencode(params)}"

    # -------------------------------------------------------------------------
    # Token endpoint
    # -------------------------------------------------------------------------

    async def exchange_code(self, code: str, redirect_uri: str) -> AuthenticationResult:
        """
        Exchange an authorization code for tokens and the signed-in user.

        Raises:
            ProviderError: If the provider rejects the code or omits required tokens
            httpx.HTTPError: If the token endpoint is unreachable
        """
        token_data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

        id_token = token_data.get("id_token")
        if not id_token:
            raise ProviderError("Token response missing id_token")

        try:
            claims = await self.verify_jwt(id_token, audience=self.client_id)
        except JWTError as e:
            raise ProviderError(f"ID token verification failed: {e}") from e

        return AuthenticationResult(
            user=principal_from_claims(claims),
            access_token=token_data.get("access_token") or "",
            id_token=id_token,
            refresh_token=token_data.get("refresh_token"),
            expires_in=token_data.get("expires_in"),
        )

    async def refresh_access_token(self, refresh_token: str) -> RefreshResult:
        """
        Mint a new access token from a refresh token.

        Raises:
            ProviderError: If the provider rejects the refresh token
            httpx.HTTPError: If the token endpoint is unreachable
        """
        token_data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

        user = None
        id_token = token_data.get("id_token")
        if id_token:
            try:
                user = principal_from_claims(await self.verify_jwt(id_token, audience=self.client_id))
            except JWTError as e:
                logger.warning(f"Ignoring unverifiable ID token in refresh response: {e}")
                id_token = None

        return RefreshResult(
            access_token=token_data.get("access_token") or "",
            refresh_token=token_data.get("refresh_token"),
            id_token=id_token,
            user=user,
            expires_in=token_data.get("expires_in"),
        )

    async def _token_request(self, payload: Dict[str, str]) -> Dict[str, Any]:
        payload = {
            **payload,
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }

        response = await self._client.post(
            self.token_endpoint,
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if not response.is_success:
            error_data = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
            error_msg = error_data.get("error_description") or error_data.get("error") or f"HTTP {response.status_code}"
            raise ProviderError(f"Token request failed: {error_msg}")

        try:
            token_data = response.json()
        except ValueError as e:
            raise ProviderError("Token response is not JSON") from e

        if not isinstance(token_data, dict):
            raise ProviderError("Token response is not a JSON object")

        return token_data

    # -------------------------------------------------------------------------
    # Access token validation
    # -------------------------------------------------------------------------

    async def validate_access_token(self, token: str) -> TokenValidation:
        """
        Check an access token's signature, issuer and expiry.

        Returns valid=False for a token that fails verification. Transport
        errors while fetching JWKS propagate to the caller.
        """
        try:
            claims = await self.verify_jwt(token)
        except JWTError as e:
            logger.info(f"Access token rejected: {e}")
            return TokenValidation(valid=False)

        user = principal_from_claims(claims) if extract_email_from_claims(claims) else None
        return TokenValidation(valid=True, user=user)

    # -------------------------------------------------------------------------
    # JWKS
    # -------------------------------------------------------------------------

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the provider JWKS with caching.

        Raises:
            httpx.HTTPError: If JWKS endpoint is unreachable
            ProviderError: If response is invalid
        """
        current_time = time.time()

        if (
            not force_refresh
            and self._jwks_cache
            and (current_time - self._jwks_cache_time) < self._jwks_cache_seconds
        ):
            return self._jwks_cache

        response = await self._client.get(self.jwks_uri)
        response.raise_for_status()

        jwks_data = response.json()

        if "keys" not in jwks_data:
            raise ProviderError("Invalid JWKS response: missing 'keys' field")

        self._jwks_cache = jwks_data
        self._jwks_cache_time = current_time

        return jwks_data

    @staticmethod
    def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Extract the public key from JWKS that matches the token's kid.

        Raises:
            JWTError: If token header is malformed or has no kid
        """
        unverified_header = jwt.get_unverified_header(token)

        kid = unverified_header.get("kid")
        if not kid:
            raise JWTError("Token header missing 'kid' (Key ID)")

        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key

        return None

    async def verify_jwt(self, token: str, audience: Optional[str] = None) -> Dict[str, Any]:
        """
        Verify a provider-issued JWT and return its claims.

        The audience is checked only when one is given; access tokens are
        validated on signature, issuer and expiry.

        Raises:
            JWTError: If token is invalid, expired, or signature doesn't match
            httpx.HTTPError: If JWKS endpoint is unreachable
        """
        jwks = await self.fetch_jwks()

        signing_key = self.get_signing_key(token, jwks)
        if not signing_key:
            # Keys may have rotated
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = self.get_signing_key(token, jwks)

            if not signing_key:
                raise JWTError("Unable to find matching signing key in JWKS")

        algorithm = signing_key.get("alg", "RS256")
        try:
            public_key = jwk.construct(signing_key, algorithm=algorithm)
        except Exception as e:
            raise JWTError(f"Failed to construct public key from JWK: {e}")

        return jwt.decode(
            token,
            public_key.to_pem().decode("utf-8"),
            algorithms=[algorithm],
            audience=audience,
            issuer=self.environment_url,
            options={
                "verify_signature": True,
                "verify_aud": audience is not None,
                "verify_iat": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_at_hash": False,
                "leeway": 10,
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()
