"""Bearer token verification and permission-gating FastAPI dependencies.

Tokens are minted by the identity provider; this module only verifies them
and turns their ``email`` (or ``sub``) claim into a principal identifier.
Refused requests are written to the security event trail.
"""

import logging
from typing import Any, Dict, Optional, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError

from authz.core.config import settings
from authz.core.exceptions import forbidden, unauthorized
from authz.services.decision_engine import Decision, DecisionEngine
from authz.services.security_events import security_event_service

logger = logging.getLogger("authz")

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise unauthorized("Invalid or expired token")


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> Union[int, str]:
    """Principal identifier from the Bearer token: lower-cased email, else the subject."""
    if credentials is None:
        raise unauthorized()
    payload = decode_token(credentials.credentials)
    email = payload.get("email")
    if email:
        principal = str(email).strip().lower()
    else:
        subject = payload.get("sub")
        if subject is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload",
            )
        principal = int(subject) if str(subject).isdigit() else str(subject)
    request.state.principal = principal
    return principal


def get_decision_engine(request: Request) -> DecisionEngine:
    """The engine built during application startup."""
    return request.app.state.decision_engine


def record_denial(
    request: Request,
    principal: Union[int, str],
    event_type: str,
    details: Dict[str, Any],
    severity: str = "medium",
) -> None:
    """Write a security event for a refused request; failures are logged, never raised."""
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        return
    db = session_factory()
    try:
        security_event_service.log_from_request(
            db, request, event_type, principal, severity=severity, details=details,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to record security event '%s' for '%s': %s", event_type, principal, e)
    finally:
        db.close()


class RequirePermission:
    """Dependency that requires the caller to hold every listed capability."""

    def __init__(self, *capabilities: str):
        if not capabilities:
            raise ValueError("RequirePermission needs at least one capability")
        self.capabilities = capabilities

    async def __call__(
        self,
        request: Request,
        principal: Union[int, str] = Depends(get_current_principal),
        engine: DecisionEngine = Depends(get_decision_engine),
    ) -> Dict[str, Decision]:
        decisions = engine.decide_many(principal, self.capabilities)
        denied = [name for name in self.capabilities if not decisions[name].allowed]
        if denied:
            logger.info("Denied %s %s to '%s': missing %s", request.method, request.url.path, principal, denied)
            record_denial(request, principal, "unauthorized_access", {
                "required_permissions": list(self.capabilities),
                "denied": {name: decisions[name].reason.value for name in denied},
            })
            first = decisions[denied[0]]
            raise forbidden(f"Permission '{denied[0]}' denied ({first.reason.value})")
        return decisions


class RequireLevel:
    """Dependency that requires a primary role at least as privileged as ``max_level``."""

    def __init__(self, max_level: int):
        self.max_level = max_level

    async def __call__(
        self,
        request: Request,
        principal: Union[int, str] = Depends(get_current_principal),
        engine: DecisionEngine = Depends(get_decision_engine),
    ) -> Union[int, str]:
        if not engine.has_level(principal, self.max_level):
            logger.info("Denied %s %s to '%s': level above %s", request.method, request.url.path, principal, self.max_level)
            record_denial(request, principal, "insufficient_role_level", {"required_level": self.max_level})
            raise forbidden(f"Requires role level {self.max_level} or higher authority")
        return principal
