"""
Authentication Package

This package handles the SSO login flow against the identity provider and
the verification of every protected request.

Key responsibilities:
- Redirecting to the provider and completing the authorization-code callback
- Encrypting access tokens for cookie storage
- Keeping refresh tokens and server-side sessions
- Verifying access tokens per request, refreshing them when they expire
- Recording auth events in a bounded audit log

Modules:
- routes: Public authentication endpoints (/auth, /auth/callback, /auth/me, ...)
- orchestrator: Authorization redirect, callback and logout
- gate: Token verification gate and the require_principal dependency
- provider: Identity provider interface and Scalekit client
- session: Server-side session store with signed session cookies
- crypto: Access token cookie encryption
- store: Refresh token store
- audit: Audit log ring buffer
- cookies: Cookie names, lifetimes and attributes
- errors: Gate failure taxonomy

The authentication flow:
1. Client is sent to /auth, which redirects to the provider
2. User authenticates with the provider
3. Frontend posts the authorization code to /auth/callback
4. Server exchanges the code, creates the session and sets cookies
5. Protected routes run the gate, which refreshes expired tokens
"""

from .gate import TokenVerificationGate, require_principal
from .orchestrator import AuthOrchestrator
from .routes import auth_router

__all__ = [
    "auth_router",
    "AuthOrchestrator",
    "TokenVerificationGate",
    "require_principal",
]
