"""
Entitlement endpoints.

Denials are returned as JSON bodies carrying the counts the client needs
for its upgrade prompt; only the status code differs from a success.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

import dona.config as config
from dona.context import RequestContext
from dona.services.entitlements import EntitlementService
from dona.services.results import DAILY_NOT_ENTITLED
from app.deps import get_entitlement_service, get_request_context


router = APIRouter(prefix="/entitlements", tags=["entitlements"])


def _denied(status_code: int, error: str, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **body})


@router.get("/usage")
def usage(
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    return service.usage_summary(context)


@router.post("/store/{kind}")
def store(
    kind: str,
    payload: Optional[dict[str, Any]] = Body(default=None),
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    result = service.try_store(context, kind, payload)
    if not result.allowed:
        return _denied(403, result.status, result.to_dict())
    return result.to_dict()


@router.post("/spend")
def spend(
    amount: int = Body(default=1, embed=True),
    reason: Optional[str] = Body(default=None, embed=True),
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    result = service.try_spend(context, amount, reason=reason)
    if not result.success:
        return _denied(409, "balance_insufficient", result.to_dict())
    return result.to_dict()


@router.get("/daily/{feature}")
def check_daily(
    feature: str,
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    return service.check_daily(context, feature).to_dict()


@router.post("/daily/{feature}")
def consume_daily(
    feature: str,
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    result = service.try_daily(context, feature)
    if result.status == DAILY_NOT_ENTITLED:
        return _denied(403, result.status, result.to_dict())
    if not result.allowed:
        return _denied(429, result.status, result.to_dict())
    return result.to_dict()


@router.post("/completions/{milestone_type}")
def record_completion(
    milestone_type: str,
    subject_key: Optional[str] = Body(default=None, embed=True),
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    return service.record_completion(context, milestone_type, subject_key=subject_key).to_dict()


@router.get("/rewards")
def rewards(
    limit: int = Query(default=config.MAX_RESULT_LIMIT),
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    return service.list_rewards(context, limit=limit)


@router.get("/audit")
def audit(
    event_type: Optional[str] = Query(default=None),
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(default=config.MAX_RESULT_LIMIT),
    context: RequestContext = Depends(get_request_context),
    service: EntitlementService = Depends(get_entitlement_service),
):
    return service.audit_history(context, event_type=event_type, limit=limit, cursor=cursor)
