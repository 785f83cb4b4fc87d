# Overview: Service-layer operations for the billing ledger; append-only event log.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import BillingEvent
from parktrack.time_utils import utcnow
"""
Billing Ledger Invariants (authoritative)

- Append-only audit log for engine events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the change they record;
  the caller commits.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_billing_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id,
    payer_id: str | None = None,
    session_id: int | None = None,
    charge_id: int | None = None,
    invoice_id: str | None = None,
    actor_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[str] = None,
) -> BillingEvent:
    """
    Append-only billing ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    ev = BillingEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payer_id=payer_id,
        session_id=session_id,
        charge_id=charge_id,
        invoice_id=invoice_id,
        actor_id=actor_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_billing_events(
    *,
    payer_id: str | None = None,
    entity_type: str | None = None,
    entity_id=None,
    limit: int = 100,
) -> list[BillingEvent]:
    """Newest first. Filters are ANDed."""
    query = db.session.query(BillingEvent)
    if payer_id is not None:
        query = query.filter(BillingEvent.payer_id == payer_id)
    if entity_type is not None:
        query = query.filter(BillingEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(BillingEvent.entity_id == str(entity_id))
    return query.order_by(BillingEvent.occurred_at.desc(), BillingEvent.id.desc()).limit(limit).all()
