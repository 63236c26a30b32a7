"""
Data Models Module

This module defines Pydantic models for request/response validation
and data serialization throughout the auth server.

Models are organized by functional area:
- Identity models (the authenticated principal)
- Session models (server-side versioned session records)
- Provider boundary models (results returned by the identity provider)
- Audit models (ring buffer entries)
- HTTP request/response bodies
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model that accepts snake_case or camelCase and emits camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ============================================================================
# Identity Models
# ============================================================================

class Principal(CamelModel):
    """Authenticated user snapshot captured at login or refresh time."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(None, description="Provider user identifier")
    name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Email address")
    email_verified: Optional[bool] = Field(None, description="Whether the provider verified the email")
    given_name: Optional[str] = Field(None, description="Given name")
    organization: Optional[str] = Field(None, description="Organization identifier")
    avatar: Optional[str] = Field(None, description="Avatar URL")

    @property
    def stable_id(self) -> Optional[str]:
        """Identifier used to key the refresh token store: id, then email."""
        return self.id or self.email or None


# ============================================================================
# Session Models
# ============================================================================

class SessionRecord(BaseModel):
    """
    Server-side session state.

    Records are immutable. A change is made by calling evolve(), which
    returns the next version, and handing that to SessionStore.replace().
    """

    model_config = ConfigDict(frozen=True)

    version: int = Field(default=1, description="Monotonic record version")
    user: Optional[Principal] = Field(None, description="Last known principal")
    id_token: Optional[str] = Field(None, description="Provider ID token, used only for logout")
    user_id: Optional[str] = Field(None, description="Key into the refresh token store")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def evolve(self, **changes: Any) -> "SessionRecord":
        changes.update(version=self.version + 1, updated_at=utcnow())
        return self.model_copy(update=changes)


# ============================================================================
# Provider Boundary Models
# ============================================================================

class TokenValidation(BaseModel):
    """Outcome of validating an access token with the provider."""

    valid: bool = Field(..., description="Whether the provider accepted the token")
    user: Optional[Principal] = Field(None, description="User the token belongs to, when known")


class AuthenticationResult(BaseModel):
    """Tokens and user returned by the authorization-code exchange."""

    user: Principal
    access_token: str = Field(..., min_length=1)
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class RefreshResult(BaseModel):
    """Tokens returned by a refresh-token grant."""

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    user: Optional[Principal] = None
    expires_in: Optional[int] = None


# ============================================================================
# Audit Models
# ============================================================================

AuditLevel = Literal["info", "warn", "error"]


class AuditEntry(CamelModel):
    """Single auth event kept in the audit ring buffer."""

    level: AuditLevel = Field(..., description="Severity (info, warn, error)")
    message: str = Field(..., description="Human-readable event description")
    user_id: Optional[str] = Field(None, description="User the event concerns")
    email: Optional[str] = Field(None, description="Email of that user")
    error: Optional[str] = Field(None, description="Error text, for failures")
    ip: Optional[str] = Field(None, description="Source IP of the request")
    timestamp: Optional[datetime] = Field(None, description="Server time, assigned at insertion")


# ============================================================================
# HTTP Request/Response Models
# ============================================================================

class CallbackRequest(BaseModel):
    """Body posted by the frontend callback page."""

    code: Optional[str] = Field(None, description="Authorization code from the provider")
    error: Optional[str] = Field(None, description="Error code if authentication failed")
    error_description: Optional[str] = Field(None, description="Error description")


class MeResponse(BaseModel):
    """Response for the current-user endpoint."""

    authenticated: bool = True
    user: Optional[Principal] = None


class LogoutResponse(CamelModel):
    """Provider logout URL the client must visit to finish logout."""

    logout_url: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Error type or code")
    message: Optional[str] = Field(None, description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
