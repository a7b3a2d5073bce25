"""
tabcoins.services.ledger_store — Append-only Balance Ledger
============================================================

Raw storage primitives over ``balance_operations``.  No business rules
live here (see :mod:`tabcoins.services.balance_service`), and nothing is
retried: database errors propagate to the caller unmodified.

Every function works inside the caller's session, so an append commits
or rolls back together with whatever triggered it.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from tabcoins.database.models import BalanceOperation, BalanceType, OriginatorType


def append(
    session: Session,
    *,
    balance_type: BalanceType,
    recipient_id: uuid.UUID,
    amount: int,
    originator_type: OriginatorType,
    originator_id: uuid.UUID,
) -> BalanceOperation:
    """Insert one ledger row.

    ``id``, ``sequence`` and ``created_at`` are assigned on insert; the
    row is flushed so they are populated on return.
    """
    operation = BalanceOperation(
        balance_type=balance_type.value,
        recipient_id=recipient_id,
        amount=amount,
        originator_type=originator_type.value,
        originator_id=originator_id,
    )
    session.add(operation)
    session.flush()
    session.refresh(operation)
    return operation


def sum_by_recipient_and_type(
    session: Session,
    recipient_id: uuid.UUID,
    balance_type: BalanceType,
) -> int:
    """``COALESCE(SUM(amount), 0)`` — 0 for an unknown recipient."""
    types = [t.value for t in balance_type.ledger_types()]
    total = session.scalar(
        select(func.coalesce(func.sum(BalanceOperation.amount), 0)).where(
            BalanceOperation.recipient_id == recipient_id,
            BalanceOperation.balance_type.in_(types),
        )
    )
    return int(total or 0)


def sum_credit_debit(session: Session, recipient_id: uuid.UUID) -> tuple[int, int]:
    """Return ``(positive, negative)`` sums of a content's TabCoin rows.

    ``negative`` is zero or below.
    """
    types = [t.value for t in BalanceType.CONTENT_TABCOIN.ledger_types()]
    amount = BalanceOperation.amount
    row = session.execute(
        select(
            func.coalesce(func.sum(case((amount > 0, amount), else_=0)), 0),
            func.coalesce(func.sum(case((amount < 0, amount), else_=0)), 0),
        ).where(
            BalanceOperation.recipient_id == recipient_id,
            BalanceOperation.balance_type.in_(types),
        )
    ).one()
    return int(row[0]), int(row[1])


def get_by_id(session: Session, operation_id: uuid.UUID) -> BalanceOperation | None:
    return session.scalar(
        select(BalanceOperation).where(BalanceOperation.id == operation_id)
    )


def list_by_originator(
    session: Session,
    originator_id: uuid.UUID | Iterable[uuid.UUID],
) -> list[BalanceOperation]:
    """Rows caused by one originator (or any of several), oldest first."""
    if isinstance(originator_id, uuid.UUID):
        ids = [originator_id]
    else:
        ids = list(originator_id)
    if not ids:
        return []
    return list(
        session.scalars(
            select(BalanceOperation)
            .where(BalanceOperation.originator_id.in_(ids))
            .order_by(BalanceOperation.created_at.asc(), BalanceOperation.sequence.asc())
        ).all()
    )
