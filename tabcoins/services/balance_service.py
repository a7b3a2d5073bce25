"""
tabcoins.services.balance_service — Balance Engine
===================================================

The only module allowed to decide what a balance change *means*.
Storage goes through :mod:`tabcoins.services.ledger_store`; this layer
adds validation, compensating undo, score upkeep and content rating.

Invariants:
  * A balance is always ``SUM(amount)`` of its ledger rows.
  * Rows are never updated or deleted.  An undo is a new row with the
    amount negated, ``originator_type='undo'`` and ``originator_id`` set
    to the undone operation's ``id``.
  * Any row touching a content's TabCoins recomputes that content's
    score in the same session, so score and ledger never diverge.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tabcoins.config import DEFAULT_CONFIG, TabcoinsConfig
from tabcoins.database.models import (
    BalanceOperation,
    BalanceType,
    Content,
    ContentStatus,
    Event,
    EventType,
    OriginatorType,
)
from tabcoins.errors import NotFoundError, UnprocessableEntityError, ValidationError
from tabcoins.services import event_service, ledger_store, scoring_service

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("credit", "debit")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _parse_balance_type(value: BalanceType | str) -> BalanceType:
    try:
        return BalanceType(value)
    except ValueError:
        raise ValidationError(
            f'Unknown balance type "{value}".',
            error_location_code="SERVICE:BALANCE:CREATE:INVALID_BALANCE_TYPE",
        ) from None


def _parse_originator_type(value: OriginatorType | str) -> OriginatorType:
    try:
        return OriginatorType(value)
    except ValueError:
        raise ValidationError(
            f'Unknown originator type "{value}".',
            error_location_code="SERVICE:BALANCE:CREATE:INVALID_ORIGINATOR_TYPE",
        ) from None


def _validate_amount(amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(
            "The amount must be an integer.",
            error_location_code="SERVICE:BALANCE:CREATE:INVALID_AMOUNT",
        )
    if amount == 0:
        raise ValidationError(
            "The amount must not be zero.",
            error_location_code="SERVICE:BALANCE:CREATE:ZERO_AMOUNT",
        )
    return amount


# ---------------------------------------------------------------------------
# Core operations
# ---------------------------------------------------------------------------
def create(
    session: Session,
    *,
    balance_type: BalanceType | str,
    recipient_id: uuid.UUID,
    amount: int,
    originator_type: OriginatorType | str,
    originator_id: uuid.UUID,
) -> BalanceOperation:
    """Validate and append one balance operation.

    Raises :class:`ValidationError` for a zero or non-integer amount or an
    unknown type tag; nothing is written in that case.
    """
    parsed_type = _parse_balance_type(balance_type)
    parsed_originator = _parse_originator_type(originator_type)
    amount = _validate_amount(amount)

    operation = ledger_store.append(
        session,
        balance_type=parsed_type,
        recipient_id=recipient_id,
        amount=amount,
        originator_type=parsed_originator,
        originator_id=originator_id,
    )

    if parsed_type.is_content:
        scoring_service.update_content_score(session, recipient_id)

    return operation


def find_by_recipient_id(
    session: Session,
    recipient_id: uuid.UUID,
    balance_type: BalanceType | str,
) -> int:
    """Current balance of *recipient_id* for *balance_type*."""
    return ledger_store.sum_by_recipient_and_type(
        session, recipient_id, _parse_balance_type(balance_type)
    )


def find_all_by_originator_id(
    session: Session,
    originator_ids: uuid.UUID | Iterable[uuid.UUID],
) -> list[BalanceOperation]:
    return ledger_store.list_by_originator(session, originator_ids)


def _find_reversal(session: Session, operation_id: uuid.UUID) -> BalanceOperation | None:
    return session.scalar(
        select(BalanceOperation).where(
            BalanceOperation.originator_type == OriginatorType.UNDO.value,
            BalanceOperation.originator_id == operation_id,
        )
    )


def undo(session: Session, operation_id: uuid.UUID) -> BalanceOperation:
    """Reverse a balance operation with a compensating row.

    Repeating the call returns the existing reversal instead of
    reversing twice.

    Raises
    ------
    NotFoundError
        If *operation_id* doesn't exist.
    ValidationError
        If *operation_id* is itself a reversal.
    """
    original = ledger_store.get_by_id(session, operation_id)
    if original is None:
        raise NotFoundError(
            "The balance operation could not be found.",
            error_location_code="SERVICE:BALANCE:UNDO:NOT_FOUND",
        )
    if original.originator_type == OriginatorType.UNDO.value:
        raise ValidationError(
            "A reversal cannot be undone.",
            error_location_code="SERVICE:BALANCE:UNDO:ALREADY_A_REVERSAL",
        )

    existing = _find_reversal(session, operation_id)
    if existing is not None:
        logger.debug("Balance operation %s already undone by %s", operation_id, existing.id)
        return existing

    try:
        with session.begin_nested():   # SAVEPOINT
            reversal = create(
                session,
                balance_type=original.balance_type,
                recipient_id=original.recipient_id,
                amount=-original.amount,
                originator_type=OriginatorType.UNDO,
                originator_id=original.id,
            )
    except IntegrityError:
        # A concurrent undo won; uq_balance_operations_undo_originator caught it.
        existing = _find_reversal(session, operation_id)
        if existing is None:
            raise
        logger.debug("Balance operation %s undone concurrently by %s", operation_id, existing.id)
        return existing

    logger.info(
        "Undid balance operation %s (%s %+d for %s)",
        original.id, original.balance_type, original.amount, original.recipient_id,
    )
    return reversal


def undo_all_by_originator_id(
    session: Session,
    originator_ids: uuid.UUID | Iterable[uuid.UUID],
) -> list[BalanceOperation]:
    """Undo every operation caused by the given originator(s)."""
    return [
        undo(session, operation.id)
        for operation in find_all_by_originator_id(session, originator_ids)
        if operation.originator_type != OriginatorType.UNDO.value
    ]


# ---------------------------------------------------------------------------
# Content rating
# ---------------------------------------------------------------------------
def _has_recent_rating(
    session: Session,
    *,
    content_id: uuid.UUID,
    from_user_id: uuid.UUID,
    since: datetime,
) -> bool:
    rating = session.scalar(
        select(BalanceOperation.id)
        .join(Event, Event.id == BalanceOperation.originator_id)
        .where(
            BalanceOperation.recipient_id == content_id,
            BalanceOperation.balance_type.in_(
                [BalanceType.CONTENT_TABCOIN_CREDIT.value, BalanceType.CONTENT_TABCOIN_DEBIT.value]
            ),
            Event.type == EventType.UPDATE_CONTENT_TABCOINS.value,
            Event.originator_user_id == from_user_id,
            Event.created_at >= since,
        )
        .limit(1)
    )
    return rating is not None


def rate_content(
    session: Session,
    *,
    content_id: uuid.UUID,
    from_user_id: uuid.UUID,
    transaction_type: str,
    client_ip: str | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> int:
    """Spend the voter's TabCoins to move a content's balance by ±1.

    The voter pays ``config.rating_cost`` TabCoins and earns 1 TabCash;
    the content and its owner each move by +1 (``credit``) or -1
    (``debit``).  Returns the content's new TabCoin balance.
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(
            '"transaction_type" must be "credit" or "debit".',
            error_location_code="SERVICE:BALANCE:RATE_CONTENT:INVALID_TRANSACTION_TYPE",
        )

    content = session.get(Content, content_id)
    if content is None or content.status != ContentStatus.PUBLISHED.value:
        raise NotFoundError(
            "The content could not be found.",
            error_location_code="SERVICE:BALANCE:RATE_CONTENT:CONTENT_NOT_FOUND",
        )
    if content.owner_id == from_user_id:
        raise ValidationError(
            "You cannot rate your own content.",
            error_location_code="SERVICE:BALANCE:RATE_CONTENT:OWN_CONTENT",
        )

    now = now or datetime.now(UTC)
    if _has_recent_rating(
        session,
        content_id=content_id,
        from_user_id=from_user_id,
        since=now - config.rating_cooldown,
    ):
        raise ValidationError(
            "You are trying to rate the same content too many times.",
            action=f"This operation cannot be repeated within {config.rating_cooldown_hours} hours.",
            error_location_code="SERVICE:BALANCE:RATE_CONTENT:TOO_MANY_RATINGS",
        )

    available = find_by_recipient_id(session, from_user_id, BalanceType.USER_TABCOIN)
    if available < config.rating_cost:
        raise UnprocessableEntityError(
            "Could not add TabCoins to this content.",
            action=f"You need at least {config.rating_cost} TabCoins to do this.",
            error_location_code="SERVICE:BALANCE:RATE_CONTENT:NOT_ENOUGH",
        )

    event = event_service.create_event(
        session,
        type=EventType.UPDATE_CONTENT_TABCOINS,
        originator_user_id=from_user_id,
        originator_ip=client_ip,
        metadata={
            "transaction_type": transaction_type,
            "from_user_id": str(from_user_id),
            "content_owner_id": str(content.owner_id),
            "content_id": str(content_id),
            "amount": config.rating_cost,
        },
        created_at=now,
    )

    direction = 1 if transaction_type == "credit" else -1
    content_type = (
        BalanceType.CONTENT_TABCOIN_CREDIT if direction > 0 else BalanceType.CONTENT_TABCOIN_DEBIT
    )
    entries = [
        (BalanceType.USER_TABCOIN, from_user_id, -config.rating_cost),
        (BalanceType.USER_TABCASH, from_user_id, 1),
        (BalanceType.USER_TABCOIN, content.owner_id, direction),
        (content_type, content_id, direction),
    ]
    for balance_type, recipient_id, amount in entries:
        create(
            session,
            balance_type=balance_type,
            recipient_id=recipient_id,
            amount=amount,
            originator_type=OriginatorType.EVENT,
            originator_id=event.id,
        )

    return find_by_recipient_id(session, content_id, BalanceType.CONTENT_TABCOIN)
