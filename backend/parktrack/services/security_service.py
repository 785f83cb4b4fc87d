# Overview: Service-layer operations for security events; append-only audit of rejected credentials.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import SecurityEvent
from parktrack.time_utils import utcnow


logger = logging.getLogger(__name__)

EVENT_TOKEN_TAMPERED = "TOKEN_TAMPERED"


def log_security_event(
    event_type: str,
    success: bool,
    payer_id: str | None = None,
    vehicle_id: str | None = None,
    agent_id: str | None = None,
    lot_id: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for security monitoring. A rejected token must
    be recorded even though the scan that carried it fails, so this commits
    on its own by default.

    event_type examples:
    - TOKEN_TAMPERED
    """
    event = SecurityEvent(
        event_type=event_type,
        success=success,
        payer_id=payer_id,
        vehicle_id=vehicle_id,
        agent_id=agent_id,
        lot_id=lot_id,
        reason=reason,
        ip_address=ip_address,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    if commit:
        db.session.commit()

    if not success:
        logger.warning(
            "Security event %s: payer=%s vehicle=%s agent=%s lot=%s reason=%s",
            event_type, payer_id, vehicle_id, agent_id, lot_id, reason,
        )
    return event


def list_security_events(event_type: str | None = None, limit: int = 100) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent)
    if event_type:
        query = query.filter_by(event_type=event_type)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
