"""
Configuration module for the SSO auth server.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider, session cookies, access-token encryption,
frontend redirects and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Insecure fallbacks. Both are reported by validate_configuration().
DEFAULT_SESSION_SECRET = "your-secret-key-change-in-production"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every field has a default so the application can be imported without a
    configured environment; validate_configuration() reports what is missing.
    """

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the server",
    )

    PORT: int = Field(
        default=8080,
        description="Port to bind the server",
        ge=1,
        le=65535,
    )

    ENVIRONMENT: str = Field(
        default="development",
        description="Deployment environment (development or production)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    API_PREFIX: str = Field(
        default="/api/v1",
        description="Path prefix for every API route",
    )

    MONGO_URL: Optional[str] = Field(
        None,
        description="Database connection string",
    )

    # =========================================================================
    # Identity Provider (Scalekit) Configuration
    # =========================================================================

    SCALEKIT_ENVIRONMENT_URL: str = Field(
        default="",
        description="Identity provider environment URL (e.g., https://acme.scalekit.dev)",
    )

    SCALEKIT_CLIENT_ID: str = Field(
        default="",
        description="Identity provider client ID",
    )

    SCALEKIT_CLIENT_SECRET: str = Field(
        default="",
        description="Identity provider client secret",
    )

    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Upper bound for a single call to the identity provider",
        gt=0,
        le=120,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Session & Token Storage
    # =========================================================================

    SESSION_SECRET: str = Field(
        default=DEFAULT_SESSION_SECRET,
        description="Secret for signing session cookies",
        min_length=16,
    )

    SESSION_TTL_SECONDS: int = Field(
        default=24 * 60 * 60,
        description="Server-side session lifetime in seconds",
        ge=60,
    )

    ENCRYPTION_KEY: Optional[str] = Field(
        None,
        description="Secret used to derive the access-token cookie encryption key",
    )

    # =========================================================================
    # Frontend, Redirects & CORS
    # =========================================================================

    FRONTEND_URL: str = Field(
        default="http://localhost:3000",
        description="Frontend origin used for post-login redirects",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (defaults to FRONTEND_URL)",
    )

    AUTH_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Redirect URI registered with the provider (defaults to <FRONTEND_URL>/callback)",
    )

    POST_LOGOUT_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Where the provider sends the user after logout (defaults to FRONTEND_URL)",
    )

    LOGOUT_REDIRECT: bool = Field(
        default=False,
        description="Redirect to the provider logout URL instead of returning it as JSON",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def frontend_url(self) -> str:
        """Frontend URL without trailing slash."""
        return self.FRONTEND_URL.rstrip("/")

    @property
    def provider_url(self) -> str:
        """Provider environment URL without trailing slash."""
        return self.SCALEKIT_ENVIRONMENT_URL.rstrip("/")

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or the frontend origin if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return [self.frontend_url]

        origins = [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]
        return origins

    @property
    def auth_redirect_uri(self) -> str:
        return self.AUTH_REDIRECT_URI or f"{self.frontend_url}/callback"

    @property
    def post_logout_redirect_uri(self) -> str:
        return self.POST_LOGOUT_REDIRECT_URI or self.frontend_url

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate that LOG_LEVEL names a standard logging level.

        Raises:
            ValueError: If the level is unknown
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()

    @field_validator("API_PREFIX")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        """Normalize the prefix to a leading slash and no trailing slash."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This is called while the application is built so misconfiguration shows
    up in the startup logs.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    # Identity provider configuration
    if not settings.SCALEKIT_ENVIRONMENT_URL:
        errors.append("SCALEKIT_ENVIRONMENT_URL is not set")
    if not settings.SCALEKIT_CLIENT_ID:
        errors.append("SCALEKIT_CLIENT_ID is not set")
    if not settings.SCALEKIT_CLIENT_SECRET:
        errors.append("SCALEKIT_CLIENT_SECRET is not set")

    # Insecure defaults
    if settings.SESSION_SECRET == DEFAULT_SESSION_SECRET:
        warnings.append("SESSION_SECRET is using the built-in default (not secure for production)")
    if not settings.ENCRYPTION_KEY:
        warnings.append("ENCRYPTION_KEY is not set, access tokens use the default key (not secure for production)")

    if not settings.MONGO_URL:
        warnings.append("MONGO_URL is not set")

    if settings.is_production and settings.frontend_url.startswith("http://"):
        warnings.append("FRONTEND_URL is not https in production")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "environment": settings.ENVIRONMENT,
        "session_ttl_seconds": settings.SESSION_TTL_SECONDS,
    }
