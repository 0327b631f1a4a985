"""Security event service — append-only trail of denied access."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from fastapi import Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from authz.core.exceptions import InvalidInput
from authz.core.middleware import get_request_id
from authz.models.security_event import SecurityEvent
from authz.services.store import ensure_utc, utcnow

SEVERITIES = ("low", "medium", "high", "critical")
MAX_EVENTS = 500


class SecurityEventService:
    """Records and queries security events."""

    @staticmethod
    def log(
        db: Session,
        event_type: str,
        user_email: Optional[str] = None,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        severity: str = "low",
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        """Write a single security event.

        Args:
            event_type: e.g. "unauthorized_access", "insufficient_role_level"
            severity: low, medium, high or critical

        This method commits immediately so the event survives the request.
        """
        if severity not in SEVERITIES:
            raise InvalidInput(f"Unknown severity '{severity}'")
        event = SecurityEvent(
            event_type=event_type,
            user_email=user_email,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            severity=severity,
            details=json.dumps(details, default=str) if details else None,
        )
        db.add(event)
        db.commit()
        return event

    @staticmethod
    def log_from_request(
        db: Session,
        request: Request,
        event_type: str,
        principal: Union[int, str, None],
        severity: str = "low",
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        """Write a security event with client IP, user agent, path and request id from the request."""
        forwarded = request.headers.get("x-forwarded-for", "")
        ip = (
            forwarded.split(",")[0].strip()
            or request.headers.get("x-real-ip")
            or (request.client.host if request.client else None)
        )
        ua = request.headers.get("user-agent", "")[:500]
        context = {
            "path": request.url.path,
            "method": request.method,
            "request_id": get_request_id(),
        }
        context.update(details or {})
        return SecurityEventService.log(
            db=db,
            event_type=event_type,
            user_email=principal if isinstance(principal, str) else None,
            user_id=principal if isinstance(principal, int) else None,
            ip_address=ip[:45] if ip else None,
            user_agent=ua,
            severity=severity,
            details=context,
        )

    @staticmethod
    def query_events(
        db: Session,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 50,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Newest events matching the filters, plus per-type counts for the last 24 hours."""
        query = db.query(SecurityEvent)
        if severity:
            query = query.filter(SecurityEvent.severity == severity)
        if event_type:
            query = query.filter(SecurityEvent.event_type == event_type)
        events = (
            query.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc())
            .limit(max(1, min(limit, MAX_EVENTS)))
            .all()
        )

        # created_at is written by the database as naive UTC.
        since = ensure_utc(now or utcnow()).astimezone(timezone.utc).replace(tzinfo=None) - timedelta(hours=24)
        statistics = (
            db.query(SecurityEvent.event_type, SecurityEvent.severity, func.count(SecurityEvent.id).label("total"))
            .filter(SecurityEvent.created_at >= since)
            .group_by(SecurityEvent.event_type, SecurityEvent.severity)
            .order_by(func.count(SecurityEvent.id).desc())
            .all()
        )

        return {
            "events": events,
            "statistics": [
                {"event_type": row.event_type, "severity": row.severity, "count": row.total}
                for row in statistics
            ],
        }


security_event_service = SecurityEventService()
