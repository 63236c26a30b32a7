"""
Authentication routes for the SSO login flow.

Endpoints (relative to the API prefix):
- GET    /auth          : redirect to the identity provider
- POST   /auth/callback : complete the authorization-code flow
- GET    /auth/me       : current user (requires the token verification gate)
- GET    /auth/logout   : tear down the session, return the provider logout URL
- GET    /auth/logs     : recent auth events (requires the gate)
- DELETE /auth/logs     : clear recent auth events (requires the gate)

The handlers are thin; the work happens in AuthOrchestrator and
TokenVerificationGate, both taken from ``app.state.app_state``.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status

from ..models import AuditEntry, CallbackRequest, MeResponse, Principal
from .gate import require_principal
from .orchestrator import AuthOrchestrator

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


def get_orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.app_state.orchestrator


# =============================================================================
# Login Flow
# =============================================================================

@auth_router.get("")
async def authorize(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """Redirect to the provider authorization URL."""
    return orchestrator.authorize(request)


@auth_router.post("/callback")
async def callback(
    request: Request,
    payload: CallbackRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """
    Handle the authorization code posted by the frontend callback page.

    Redirects to ``<frontend>/dashboard`` on success and to
    ``<frontend>?error=...`` on any failure.
    """
    return await orchestrator.callback(request, payload)


@auth_router.get("/logout")
async def logout(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.logout(request)


# =============================================================================
# Protected Endpoints
# =============================================================================

@auth_router.get("/me", response_model=MeResponse)
async def me(user: Optional[Principal] = Depends(require_principal)):
    return MeResponse(authenticated=True, user=user)


@auth_router.get("/logs", response_model=List[AuditEntry], response_model_exclude_none=True)
async def list_logs(request: Request, _: Optional[Principal] = Depends(require_principal)):
    """Recent auth events, newest first."""
    return request.app.state.app_state.audit_log.list()


@auth_router.delete("/logs", status_code=status.HTTP_204_NO_CONTENT)
async def clear_logs(request: Request, user: Optional[Principal] = Depends(require_principal)):
    request.app.state.app_state.audit_log.clear()
    logger.info("Audit log cleared", extra={"user_id": user.stable_id if user else None})
