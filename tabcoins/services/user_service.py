"""
tabcoins.services.user_service — User Reads & Reward Stamp
===========================================================
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from tabcoins.database.models import User
from tabcoins.engine.reward import utc_midnight
from tabcoins.errors import AlreadyRewardedError, NotFoundError


def read_rewarded_at(session: Session, user_id: uuid.UUID) -> datetime:
    """Re-read ``rewarded_at`` from the database, bypassing the identity map."""
    user = session.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError(
            "The user could not be found.",
            error_location_code="SERVICE:USER:READ_REWARDED_AT:NOT_FOUND",
        )
    return as_utc(user.rewarded_at)


def update_rewarded_at(
    session: Session, user_id: uuid.UUID, now: datetime | None = None
) -> None:
    """Stamp ``rewarded_at`` unless it already falls on today's UTC date.

    The check is part of the UPDATE itself, so a concurrent stamp that
    committed first is seen even under READ COMMITTED.

    Raises
    ------
    AlreadyRewardedError
        If no row was updated.
    """
    now = now or datetime.now(UTC)
    result = session.execute(
        update(User)
        .where(User.id == user_id, User.rewarded_at < utc_midnight(now))
        .values(rewarded_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AlreadyRewardedError(
            error_location_code="SERVICE:USER:UPDATE_REWARDED_AT:ALREADY_REWARDED",
        )
    read_rewarded_at(session, user_id)   # refresh the identity map


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
