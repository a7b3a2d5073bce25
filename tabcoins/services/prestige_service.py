"""
tabcoins.services.prestige_service — Prestige Queries
======================================================

Reads a user's recent contents, takes each one's live TabCoin balance
from the ledger (never the cached score) and feeds the mean to
:mod:`tabcoins.engine.prestige`.

Window selection for :func:`get_by_user_id` is the union of:
  * the ``limit`` newest contents after skipping the ``offset`` newest, and
  * the ``limit`` newest contents published before ``time_offset``;
of which the ``limit`` oldest are averaged.  Brand new contents have not
been rated yet and would drag every mean toward the default.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from tabcoins.config import DEFAULT_CONFIG, TabcoinsConfig
from tabcoins.database.models import (
    CONTENT_TABCOIN_TYPES,
    BalanceOperation,
    BalanceType,
    Content,
    ContentStatus,
    OriginatorType,
)
from tabcoins.engine.prestige import calculate_prestige_level, calculate_tabcoins_average
from tabcoins.services import balance_service
from tabcoins.services.user_service import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ContentEarnings:
    """TabCoins the author earned through one content."""

    initial_tabcoins: int = 0
    total_tabcoins: int = 0


def _published_contents(user_id: uuid.UUID, is_root: bool | None):
    query = select(Content.id, Content.published_at).where(
        Content.owner_id == user_id,
        Content.status == ContentStatus.PUBLISHED.value,
        Content.published_at.is_not(None),
    )
    if is_root is True:
        query = query.where(Content.parent_id.is_(None))
    elif is_root is False:
        query = query.where(Content.parent_id.is_not(None))
    return query.order_by(Content.published_at.desc(), Content.id)


def get_window_content_ids(
    session: Session,
    user_id: uuid.UUID,
    *,
    is_root: bool | None = True,
    time_offset: datetime,
    limit: int,
    offset: int,
) -> list[uuid.UUID]:
    """Ids of the contents a prestige computation averages, oldest first."""
    base = _published_contents(user_id, is_root)
    skipped_recent = session.execute(base.limit(limit).offset(offset)).all()
    settled = session.execute(
        base.where(Content.published_at < time_offset).limit(limit)
    ).all()

    window = {row.id: as_utc(row.published_at) for row in (*skipped_recent, *settled)}
    oldest_first = sorted(window.items(), key=lambda item: item[1])
    return [content_id for content_id, _ in oldest_first[:limit]]


def get_by_user_id(
    session: Session,
    user_id: uuid.UUID,
    *,
    is_root: bool | None = True,
    time_offset: datetime | None = None,
    limit: int | None = None,
    offset: int | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> int:
    """Prestige level of *user_id* for root posts or comments.

    ``is_root=None`` mixes both kinds and uses the root thresholds.
    """
    if time_offset is None:
        time_offset = (now or datetime.now(UTC)) - config.prestige_time_offset

    content_ids = get_window_content_ids(
        session,
        user_id,
        is_root=is_root,
        time_offset=time_offset,
        limit=config.prestige_limit if limit is None else limit,
        offset=config.prestige_offset if offset is None else offset,
    )
    tabcoins = [
        balance_service.find_by_recipient_id(session, content_id, BalanceType.CONTENT_TABCOIN)
        for content_id in content_ids
    ]
    mean = calculate_tabcoins_average(tabcoins)
    level = calculate_prestige_level(mean, is_root is not False)

    logger.debug(
        "Prestige for user %s (root=%s): %d contents, mean=%.3f → level %d",
        user_id, is_root, len(tabcoins), mean, level,
    )
    return level


def get_by_content_id(session: Session, content_id: uuid.UUID) -> ContentEarnings:
    """User TabCoins the content's owner earned through *content_id*.

    ``initial_tabcoins`` is the publication credit; ``total_tabcoins``
    adds what other users' ratings moved.  Undone rows are netted out
    through their reversals.  Both are 0 for an unknown content.
    """
    content = session.get(Content, content_id)
    if content is None:
        return ContentEarnings()

    content_rows = session.execute(
        select(BalanceOperation.originator_id, BalanceOperation.balance_type).where(
            BalanceOperation.recipient_id == content_id,
            BalanceOperation.balance_type.in_([t.value for t in CONTENT_TABCOIN_TYPES]),
            BalanceOperation.originator_type != OriginatorType.UNDO.value,
        )
    ).all()
    if not content_rows:
        return ContentEarnings()

    initial_originators = {
        row.originator_id
        for row in content_rows
        if row.balance_type == BalanceType.CONTENT_TABCOIN.value
    }
    owner_rows = session.execute(
        select(
            BalanceOperation.id, BalanceOperation.originator_id, BalanceOperation.amount
        ).where(
            BalanceOperation.balance_type == BalanceType.USER_TABCOIN.value,
            BalanceOperation.recipient_id == content.owner_id,
            BalanceOperation.originator_id.in_(
                list({row.originator_id for row in content_rows})
            ),
        )
    ).all()
    if not owner_rows:
        return ContentEarnings()

    # Reversals point at the owner row they undo, not at the event.
    originator_by_row = {row.id: row.originator_id for row in owner_rows}
    reversal_rows = session.execute(
        select(BalanceOperation.originator_id, BalanceOperation.amount).where(
            BalanceOperation.balance_type == BalanceType.USER_TABCOIN.value,
            BalanceOperation.recipient_id == content.owner_id,
            BalanceOperation.originator_type == OriginatorType.UNDO.value,
            BalanceOperation.originator_id.in_(list(originator_by_row)),
        )
    ).all()

    movements = [(row.originator_id, row.amount) for row in owner_rows]
    movements += [(originator_by_row[row.originator_id], row.amount) for row in reversal_rows]

    initial = sum(amount for originator, amount in movements if originator in initial_originators)
    total = sum(amount for _, amount in movements)
    return ContentEarnings(initial_tabcoins=initial, total_tabcoins=total)
