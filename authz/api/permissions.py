"""Permissions API: what the caller may do, and why."""

from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError

from authz.core.exceptions import (
    InvalidInput, StoreUnavailable, UnknownPrincipal, not_found, service_unavailable,
)
from authz.core.security import (
    RequireLevel, RequirePermission, get_current_principal, get_decision_engine,
)
from authz.schemas.schemas import (
    CacheInvalidateRequest, CatalogOut, DecisionBatchOut, DecisionBatchRequest,
    DecisionOut, ExplanationOut, GrantedPermissionsOut, MessageResponse, PermissionOut,
    SecurityEventOut, SecurityEventsOut,
)
from authz.services.decision_engine import DecisionEngine
from authz.services.role_hierarchy import ADMIN_LEVEL, OWNER_LEVEL
from authz.services.security_events import security_event_service

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("/me", response_model=GrantedPermissionsOut)
async def my_permissions(
    principal: Union[int, str] = Depends(get_current_principal),
    engine: DecisionEngine = Depends(get_decision_engine),
):
    """List every capability the caller currently holds."""
    try:
        permissions = engine.list_granted_capabilities(principal)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.message)
    except UnknownPrincipal as e:
        raise not_found(e.message)
    except StoreUnavailable:
        raise service_unavailable()
    return GrantedPermissionsOut(principal=principal, permissions=permissions, total=len(permissions))


@router.get("/check", response_model=DecisionOut)
async def check_permission(
    capability: str = Query(..., min_length=1, max_length=100),
    principal: Union[int, str] = Depends(get_current_principal),
    engine: DecisionEngine = Depends(get_decision_engine),
):
    """Check one capability for the caller. Denials are reported, not raised."""
    decision = engine.decide(principal, capability)
    return DecisionOut(
        capability=capability,
        allowed=decision.allowed,
        reason=decision.reason.value,
        detail=decision.detail,
    )


@router.post("/check", response_model=DecisionBatchOut)
async def check_permissions(
    body: DecisionBatchRequest,
    principal: Union[int, str] = Depends(get_current_principal),
    engine: DecisionEngine = Depends(get_decision_engine),
):
    """Check several capabilities at once; ``require`` picks all-of or any-of."""
    decisions = engine.decide_many(principal, body.capabilities)
    results = []
    for name in body.capabilities:
        d = decisions[name]
        results.append(DecisionOut(capability=name, allowed=d.allowed, reason=d.reason.value, detail=d.detail))
    if body.require == "any":
        allowed = any(r.allowed for r in results)
    else:
        allowed = all(r.allowed for r in results)
    return DecisionBatchOut(allowed=allowed, require=body.require, decisions=results)


@router.get("/explain", response_model=ExplanationOut)
async def explain_permission(
    principal: str = Query(..., min_length=1),
    capability: str = Query(..., min_length=1, max_length=100),
    engine: DecisionEngine = Depends(get_decision_engine),
    caller=Depends(RequireLevel(ADMIN_LEVEL)),
):
    """Explain a decision for any principal (admins only)."""
    return ExplanationOut(**engine.explain(principal, capability))


@router.get("/catalog", response_model=CatalogOut)
async def list_catalog(
    category: Optional[str] = Query(None),
    engine: DecisionEngine = Depends(get_decision_engine),
    decision=Depends(RequirePermission("permissions.view")),
):
    """List the capability catalog, optionally filtered by category."""
    try:
        permissions = engine.store.list_capabilities(category)
    except StoreUnavailable:
        raise service_unavailable()
    return CatalogOut(
        permissions=[PermissionOut.model_validate(p) for p in permissions],
        categories=sorted({p.category for p in permissions if p.category}),
    )


@router.post("/cache/invalidate", response_model=MessageResponse)
async def invalidate_cache(
    body: CacheInvalidateRequest,
    request: Request,
    caller=Depends(RequireLevel(OWNER_LEVEL)),
):
    """Drop cached grants for one principal, or for everyone (owner only)."""
    cache = request.app.state.permission_cache
    if cache is None:
        return MessageResponse(message="Permission cache disabled")
    if body.principal_id is None:
        cache.invalidate_all()
        return MessageResponse(message="Permission cache cleared")
    cache.invalidate_principal(body.principal_id)
    return MessageResponse(message=f"Permission cache cleared for principal {body.principal_id}")


@router.get("/security-events", response_model=SecurityEventsOut)
async def list_security_events(
    request: Request,
    severity: Optional[str] = Query(None, pattern="^(low|medium|high|critical)$"),
    event_type: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=500),
    decisions=Depends(RequirePermission("settings.page.access", "settings.security.access")),
):
    """Recent denied-access events with per-type counts for the last 24 hours."""
    db = request.app.state.session_factory()
    try:
        result = security_event_service.query_events(db, severity=severity, event_type=event_type, limit=limit)
        return SecurityEventsOut(
            events=[SecurityEventOut.model_validate(e) for e in result["events"]],
            statistics=result["statistics"],
        )
    except SQLAlchemyError:
        raise service_unavailable()
    finally:
        db.close()
