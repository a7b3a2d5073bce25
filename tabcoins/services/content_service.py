"""
tabcoins.services.content_service — Content Lifecycle Balances
===============================================================

Status transitions that move TabCoins:

* first publication  → the content starts at 1 TabCoin and the owner earns
  their current prestige level (if positive);
* deletion of a once-published content → the owner gives back what the
  content earned them;
* ``draft → deleted`` → nothing.

Also home of :func:`find_latest_published`, used by the daily reward to
measure how long ago a user last published.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from tabcoins.config import DEFAULT_CONFIG, TabcoinsConfig
from tabcoins.database.models import (
    BalanceOperation,
    BalanceType,
    Content,
    ContentStatus,
    OriginatorType,
)
from tabcoins.errors import ForbiddenError, ValidationError
from tabcoins.services import balance_service, prestige_service

logger = logging.getLogger(__name__)

# Contents need at least this many words of 5+ letters to earn anything.
_MIN_RELEVANT_WORDS = 5
_RELEVANT_WORD = re.compile(r"[a-z]{5,}", re.IGNORECASE)


def find_latest_published(session: Session, owner_id: uuid.UUID) -> Content | None:
    """The owner's most recently published content, if any."""
    return session.scalar(
        select(Content)
        .where(
            Content.owner_id == owner_id,
            Content.status == ContentStatus.PUBLISHED.value,
            Content.published_at.is_not(None),
        )
        .order_by(Content.published_at.desc())
        .limit(1)
    )


def _has_relevant_body(body: str) -> bool:
    return len(_RELEVANT_WORD.findall(body or "")) >= _MIN_RELEVANT_WORDS


def _originator(content: Content, event_id: uuid.UUID | None) -> tuple[OriginatorType, uuid.UUID]:
    if event_id is not None:
        return OriginatorType.EVENT, event_id
    return OriginatorType.CONTENT, content.id


def credit_for_publication(
    session: Session,
    content: Content,
    *,
    event_id: uuid.UUID | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> list[BalanceOperation]:
    """Credit a content's first publication.

    Raises :class:`ForbiddenError` when the owner's prestige is negative:
    badly rated recent contents must be deleted before publishing more.
    Replies to one's own content and contents without enough substance
    earn nothing.
    """
    user_earnings = prestige_service.get_by_user_id(
        session, content.owner_id, is_root=content.is_root, config=config, now=now
    )
    if user_earnings < 0:
        raise ForbiddenError(
            "Cannot publish while other poorly rated contents are still published.",
            action="Delete your most recent contents that were rated as not relevant.",
            error_location_code="SERVICE:CONTENT:CREDIT_FOR_PUBLICATION:NEGATIVE_USER_EARNINGS",
        )

    if content.parent_id is not None:
        parent = session.get(Content, content.parent_id)
        if parent is not None and parent.owner_id == content.owner_id:
            return []

    if not _has_relevant_body(content.body):
        return []

    originator_type, originator_id = _originator(content, event_id)
    operations = []
    if user_earnings > 0:
        operations.append(balance_service.create(
            session,
            balance_type=BalanceType.USER_TABCOIN,
            recipient_id=content.owner_id,
            amount=user_earnings,
            originator_type=originator_type,
            originator_id=originator_id,
        ))
    operations.append(balance_service.create(
        session,
        balance_type=BalanceType.CONTENT_TABCOIN,
        recipient_id=content.id,
        amount=1,
        originator_type=originator_type,
        originator_id=originator_id,
    ))
    return operations


def debit_for_deletion(
    session: Session,
    content: Content,
    *,
    event_id: uuid.UUID | None = None,
) -> BalanceOperation | None:
    """Take back what a deleted content earned its owner.

    A content with a positive balance gives back everything it earned;
    otherwise only the publication credit is taken back.
    """
    earnings = prestige_service.get_by_content_id(session, content.id)
    content_tabcoins = balance_service.find_by_recipient_id(
        session, content.id, BalanceType.CONTENT_TABCOIN
    )
    if content_tabcoins > 0:
        amount = -earnings.total_tabcoins
    else:
        amount = -earnings.initial_tabcoins
    if not amount:
        return None

    originator_type, originator_id = _originator(content, event_id)
    return balance_service.create(
        session,
        balance_type=BalanceType.USER_TABCOIN,
        recipient_id=content.owner_id,
        amount=amount,
        originator_type=originator_type,
        originator_id=originator_id,
    )


def update_status(
    session: Session,
    content: Content,
    new_status: ContentStatus | str,
    *,
    event_id: uuid.UUID | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> list[BalanceOperation]:
    """Move *content* to *new_status* and apply the matching balance changes."""
    try:
        new_status = ContentStatus(new_status)
    except ValueError:
        raise ValidationError(
            f'Unknown content status "{new_status}".',
            error_location_code="SERVICE:CONTENT:UPDATE_STATUS:INVALID_STATUS",
        ) from None

    now = now or datetime.now(UTC)
    was_published = content.published_at is not None
    content.status = new_status.value

    if new_status is ContentStatus.DELETED:
        session.flush()
        if not was_published:
            return []
        operation = debit_for_deletion(session, content, event_id=event_id)
        return [operation] if operation is not None else []

    if new_status is ContentStatus.PUBLISHED and not was_published:
        content.published_at = now
        session.flush()
        operations = credit_for_publication(
            session, content, event_id=event_id, config=config, now=now
        )
        logger.info(
            "Content %s published: %d balance operations", content.id, len(operations)
        )
        return operations

    session.flush()
    return []
