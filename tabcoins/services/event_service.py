"""
tabcoins.services.event_service — Originating Events
=====================================================

Minimal event persistence: an event records who did what, and its ``id``
becomes the ``originator_id`` of the balance operations it causes.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from tabcoins.database.models import Event, EventType


def create_event(
    session: Session,
    *,
    type: EventType,
    originator_user_id: uuid.UUID | None,
    originator_ip: str | None = None,
    metadata: dict | None = None,
    created_at: datetime | None = None,
) -> Event:
    """Insert an event row and flush so its ``id`` is available."""
    event = Event(
        type=EventType(type).value,
        originator_user_id=originator_user_id,
        originator_ip=originator_ip,
        metadata_=metadata or {},
    )
    if created_at is not None:
        event.created_at = created_at
    session.add(event)
    session.flush()
    return event
