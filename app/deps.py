"""
Dependency helpers for the entitlement API.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from dona.context import AuthContext, RequestContext
from dona.services.entitlements import EntitlementService


def get_entitlement_service() -> EntitlementService:
    # Resolves DB.SessionLocal per call so tests can swap the engine
    return EntitlementService()


async def get_auth_context(
    x_account_id: Optional[str] = Header(default=None),
) -> AuthContext:
    # Stand-in for the session/JWT verifier that fronts this service
    if x_account_id and x_account_id.strip():
        return AuthContext(account_id=x_account_id.strip(), actor="user")
    return AuthContext(actor="anonymous")


async def get_request_context(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
) -> RequestContext:
    return RequestContext(
        auth=auth,
        request_id=getattr(request.state, "request_id", None),
        source="http",
    )
