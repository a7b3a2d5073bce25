"""
tabcoins.services.reward_service — Daily TabCoin Reward
========================================================

Grants a user at most one TabCoin reward per UTC day.

Flow per call:
  1. Precondition (no transaction) — the request must carry a fully loaded
     user whose ``rewarded_at`` is before today's UTC midnight.
  2. Eligibility (read-only) — prestige vs. TabCoins factor, then how long
     ago the user's latest published content was created.  See
     :mod:`tabcoins.engine.reward`.
  3. Commit (``REPEATABLE READ`` by default) — re-read ``rewarded_at``, then
     stamp it with an UPDATE that only matches a stamp from before today's
     UTC midnight.  If either step shows a concurrent request got there
     first, retreat.  Otherwise write the reward event + ledger credit.
     The day is consumed even when the amount is 0.

A lost race (our own guard, or the database reporting a serialization
failure) is not an error: the call simply returns 0.  Any other failure is
rolled back and re-raised.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from tabcoins.config import DEFAULT_CONFIG, TabcoinsConfig
from tabcoins.database.engine import run_db
from tabcoins.database.models import BalanceType, EventType, OriginatorType
from tabcoins.engine.reward import (
    RequestContext,
    UserSnapshot,
    calculate_content_age_factor,
    calculate_reward,
    calculate_tabcoins_factor,
    is_eligible_context,
    rewarded_today,
)
from tabcoins.errors import AlreadyRewardedError, is_serialization_failure
from tabcoins.services import (
    balance_service,
    content_service,
    event_service,
    prestige_service,
    user_service,
)

logger = logging.getLogger(__name__)


def calculate_amount(
    session: Session,
    user: UserSnapshot,
    *,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> int:
    """How many TabCoins *user* would earn right now (read-only)."""
    now = now or datetime.now(UTC)
    prestige = prestige_service.get_by_user_id(session, user.id, config=config, now=now)
    tabcoins_factor = calculate_tabcoins_factor(user.tabcoins, config)

    if tabcoins_factor >= prestige:
        logger.debug(
            "User %s not eligible: tabcoins factor %d >= prestige %d",
            user.id, tabcoins_factor, prestige,
        )
        return 0

    last_content = content_service.find_latest_published(session, user.id)
    content_age_factor = calculate_content_age_factor(
        last_content.created_at if last_content is not None else None,
        now,
        config,
    )
    return calculate_reward(prestige, tabcoins_factor, content_age_factor)


def _apply(
    session: Session,
    context: RequestContext,
    amount: int,
    now: datetime,
) -> None:
    """Write the reward inside the already-open transaction."""
    user = context.user
    current_rewarded_at = user_service.read_rewarded_at(session, user.id)
    if rewarded_today(current_rewarded_at, now):
        raise AlreadyRewardedError(
            error_location_code="SERVICE:REWARD:APPLY:ALREADY_REWARDED",
        )

    # Claim the day first; raises AlreadyRewardedError if another request won.
    user_service.update_rewarded_at(session, user.id, now)

    if amount > 0:
        event = event_service.create_event(
            session,
            type=EventType.REWARD_USER_TABCOINS,
            originator_user_id=user.id,
            originator_ip=context.client_ip,
            metadata={"reward_type": "daily", "amount": amount},
        )
        balance_service.create(
            session,
            balance_type=BalanceType.USER_TABCOIN,
            recipient_id=user.id,
            amount=amount,
            originator_type=OriginatorType.EVENT,
            originator_id=event.id,
        )


def save_reward(
    engine: Engine,
    context: RequestContext,
    amount: int,
    *,
    session: Session | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> int:
    """Commit *amount* for the context's user; return what was granted.

    Without *session* a dedicated session is opened at
    ``config.reward_isolation_level`` and committed here.  With one, the
    work runs in a SAVEPOINT and the caller owns the outer commit.
    """
    now = now or datetime.now(UTC)
    owns_session = session is None
    if owns_session:
        session = Session(engine, expire_on_commit=False)

    try:
        if owns_session:
            with session.begin():
                if config.reward_isolation_level:
                    session.connection(
                        execution_options={"isolation_level": config.reward_isolation_level}
                    )
                _apply(session, context, amount, now)
        else:
            with session.begin_nested():   # SAVEPOINT
                _apply(session, context, amount, now)
    except AlreadyRewardedError as exc:
        logger.warning("Daily reward for user %s skipped: %s", context.user.id, exc)
        return 0
    except DBAPIError as exc:
        if not is_serialization_failure(exc):
            raise
        logger.warning(
            "Daily reward for user %s lost a concurrent race: %s", context.user.id, exc.orig
        )
        return 0
    finally:
        if owns_session:
            session.close()

    if amount > 0:
        logger.info("Rewarded user %s with %d TabCoins", context.user.id, amount)
    return amount


def reward(
    engine: Engine,
    context: RequestContext | None,
    *,
    session: Session | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> int:
    """Run the daily reward for the requesting user.

    Returns the TabCoins granted by this call; 0 when the user is not
    eligible, was already rewarded today, or lost a concurrent race.
    """
    if not is_eligible_context(context):
        return 0

    now = now or datetime.now(UTC)
    if rewarded_today(context.user.rewarded_at, now):
        return 0

    if session is None:
        with Session(engine) as read_session:
            amount = calculate_amount(read_session, context.user, config=config, now=now)
    else:
        amount = calculate_amount(session, context.user, config=config, now=now)

    return save_reward(engine, context, amount, session=session, config=config, now=now)


async def reward_async(
    engine: Engine,
    context: RequestContext | None,
    **kwargs,
) -> int:
    """:func:`reward` for asyncio callers, via the ``run_db`` thread bridge."""
    return await run_db(reward, engine, context, **kwargs)
