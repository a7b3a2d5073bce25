"""
tests/test_reward_service.py — Daily Reward Integration Tests
==============================================================
Service-level tests for reward_service.reward(): preconditions, the
single-issuance guard, rollback on failure and the persisted effects.

Uses an in-memory SQLite database via the shared conftest fixtures.  Data
is committed up front because the reward opens its own sessions.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import (
    LONG_AGO,
    NOW,
    TEST_CONFIG,
    give_content_tabcoins,
    make_content,
    make_user,
)
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tabcoins.config import TabcoinsConfig
from tabcoins.database.models import (
    BalanceOperation,
    BalanceType,
    Event,
    EventType,
    OriginatorType,
    User,
)
from tabcoins.engine.reward import RequestContext, UserSnapshot
from tabcoins.errors import AlreadyRewardedError, NotFoundError
from tabcoins.services import balance_service, reward_service, user_service
from tabcoins.services.user_service import as_utc


class _PgError(Exception):
    """Stand-in for a psycopg2 error carrying a SQLSTATE."""

    def __init__(self, pgcode: str):
        super().__init__(f"pgcode {pgcode}")
        self.pgcode = pgcode


@pytest.fixture
def engine(db_engine):
    """Re-use the shared conftest db_engine (SQLite, StaticPool)."""
    return db_engine


def _seed_user(engine, balances=(2, 2, 2, 2, 1), days_ago=14) -> uuid.UUID:
    """A user whose root posts average *balances*, the newest published
    *days_ago* days before ``NOW``."""
    with Session(engine) as session:
        user = make_user(session)
        for index, tabcoins in enumerate(balances):
            content = make_content(
                session,
                user,
                published_at=NOW - timedelta(days=days_ago, hours=index),
            )
            give_content_tabcoins(session, content, tabcoins)
        session.commit()
        return user.id


def _context(user_id, tabcoins=20, rewarded_at=LONG_AGO, **overrides) -> RequestContext:
    fields = {
        "id": user_id,
        "username": "rewarded_user",
        "tabcoins": tabcoins,
        "rewarded_at": rewarded_at,
    }
    fields.update(overrides)
    return RequestContext(user=UserSnapshot(**fields), client_ip="127.0.0.1")


def _reward(engine, context, **kwargs):
    kwargs.setdefault("config", TEST_CONFIG)
    kwargs.setdefault("now", NOW)
    return reward_service.reward(engine, context, **kwargs)


def _reward_rows(engine, user_id) -> list[BalanceOperation]:
    with Session(engine) as session:
        return list(session.scalars(
            select(BalanceOperation).where(
                BalanceOperation.recipient_id == user_id,
                BalanceOperation.balance_type == BalanceType.USER_TABCOIN.value,
            )
        ).all())


def _rewarded_at(engine, user_id):
    with Session(engine) as session:
        return as_utc(session.get(User, user_id).rewarded_at)


def _event_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(Event))


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------
class TestPreconditions:
    def test_no_context(self, engine):
        assert _reward(engine, None) == 0

    def test_no_user(self, engine):
        assert _reward(engine, RequestContext(user=None)) == 0

    @pytest.mark.parametrize("field", ["id", "username", "tabcoins", "rewarded_at"])
    def test_incomplete_user(self, engine, field):
        user_id = _seed_user(engine)

        assert _reward(engine, _context(user_id, **{field: None})) == 0
        assert _reward_rows(engine, user_id) == []
        assert _rewarded_at(engine, user_id) == LONG_AGO

    def test_already_rewarded_today(self, engine):
        user_id = _seed_user(engine)
        midnight = NOW.replace(hour=0, minute=0, second=0, microsecond=0)

        assert _reward(engine, _context(user_id, rewarded_at=midnight)) == 0
        assert _reward(engine, _context(user_id, rewarded_at=NOW)) == 0
        assert _reward_rows(engine, user_id) == []
        assert _rewarded_at(engine, user_id) == LONG_AGO


# ---------------------------------------------------------------------------
# Granting
# ---------------------------------------------------------------------------
class TestReward:
    def test_grants_expected_amount(self, engine):
        """20 TabCoins, prestige 4, newest post 14 days old → 2."""
        user_id = _seed_user(engine)

        amount = _reward(engine, _context(user_id))

        assert amount == 2
        rows = _reward_rows(engine, user_id)
        assert [row.amount for row in rows] == [2]
        assert rows[0].originator_type == OriginatorType.EVENT.value
        assert _rewarded_at(engine, user_id) == NOW

    def test_records_reward_event(self, engine):
        user_id = _seed_user(engine)

        _reward(engine, _context(user_id))

        with Session(engine) as session:
            event = session.scalar(select(Event))
            assert event.type == EventType.REWARD_USER_TABCOINS.value
            assert event.originator_user_id == user_id
            assert event.originator_ip == "127.0.0.1"
            assert event.metadata_ == {"reward_type": "daily", "amount": 2}
            row = session.scalar(
                select(BalanceOperation).where(BalanceOperation.originator_id == event.id)
            )
            assert row.amount == 2

    def test_balance_includes_reward(self, engine):
        user_id = _seed_user(engine)

        _reward(engine, _context(user_id))

        with Session(engine) as session:
            assert balance_service.find_by_recipient_id(
                session, user_id, BalanceType.USER_TABCOIN
            ) == 2

    def test_tabcoins_factor_equal_to_prestige(self, engine):
        user_id = _seed_user(engine)

        # 40 TabCoins → factor 4 = prestige 4.
        assert _reward(engine, _context(user_id, tabcoins=40)) == 0
        assert _reward_rows(engine, user_id) == []
        assert _event_count(engine) == 0
        # The day is still consumed.
        assert _rewarded_at(engine, user_id) == NOW

    def test_zero_content_age(self, engine):
        user_id = _seed_user(engine, days_ago=0)

        assert _reward(engine, _context(user_id)) == 0
        assert _rewarded_at(engine, user_id) == NOW

    def test_content_age_counts_from_creation(self, engine):
        """A draft written four weeks ago and published an hour ago → factor 4."""
        user_id = _seed_user(engine)
        with Session(engine) as session:
            make_content(
                session,
                session.get(User, user_id),
                published_at=NOW - timedelta(hours=1),
                created_at=NOW - timedelta(days=28),
            )
            session.commit()

        # Prestige 4, TabCoins factor 1: ceil(3 / 4).
        assert _reward(engine, _context(user_id)) == 1

    def test_never_published(self, engine):
        user_id = _seed_user(engine, balances=())

        with patch("tabcoins.services.prestige_service.get_by_user_id", return_value=5):
            assert _reward(engine, _context(user_id, tabcoins=0)) == 0
        assert _rewarded_at(engine, user_id) == NOW

    def test_with_isolation_level(self, engine):
        user_id = _seed_user(engine)
        config = TabcoinsConfig(reward_isolation_level="SERIALIZABLE")

        assert _reward(engine, _context(user_id), config=config) == 2

    def test_async_entry_point(self, engine):
        user_id = _seed_user(engine)

        amount = asyncio.run(
            reward_service.reward_async(engine, _context(user_id), config=TEST_CONFIG, now=NOW)
        )

        assert amount == 2


# ---------------------------------------------------------------------------
# Single issuance & failure handling
# ---------------------------------------------------------------------------
class TestConcurrency:
    def test_stale_context_rewards_once(self, engine):
        """Two requests loaded the user before either stamped rewarded_at."""
        user_id = _seed_user(engine)
        first = _context(user_id)
        second = _context(user_id)

        results = [_reward(engine, first), _reward(engine, second)]

        assert sorted(results) == [0, 2]
        assert [row.amount for row in _reward_rows(engine, user_id)] == [2]
        assert _event_count(engine) == 1

    def test_next_day_rewards_again(self, engine):
        user_id = _seed_user(engine)
        _reward(engine, _context(user_id))

        tomorrow = NOW + timedelta(days=1)
        amount = _reward(engine, _context(user_id, rewarded_at=NOW), now=tomorrow)

        # Newest post is now 15 days old: ceil((4 - 1) / 3) = 1.
        assert amount == 1
        assert len(_reward_rows(engine, user_id)) == 2

    def test_stamp_committed_after_the_guard_read(self, engine):
        """Another request stamped today between our re-read and our UPDATE."""
        user_id = _seed_user(engine)
        stamped = NOW - timedelta(hours=1)
        with Session(engine) as session:
            session.get(User, user_id).rewarded_at = stamped
            session.commit()

        with patch(
            "tabcoins.services.user_service.read_rewarded_at", return_value=LONG_AGO
        ):
            assert _reward(engine, _context(user_id)) == 0

        assert _reward_rows(engine, user_id) == []
        assert _event_count(engine) == 0
        assert _rewarded_at(engine, user_id) == stamped

    def test_serialization_failure_returns_zero(self, engine):
        user_id = _seed_user(engine)
        failure = OperationalError("UPDATE users", {}, _PgError("40001"))

        with patch(
            "tabcoins.services.user_service.update_rewarded_at", side_effect=failure
        ):
            assert _reward(engine, _context(user_id)) == 0

        assert _reward_rows(engine, user_id) == []
        assert _event_count(engine) == 0
        assert _rewarded_at(engine, user_id) == LONG_AGO

    def test_other_database_error_propagates(self, engine):
        user_id = _seed_user(engine)
        failure = OperationalError("UPDATE users", {}, _PgError("57014"))

        with patch(
            "tabcoins.services.user_service.update_rewarded_at", side_effect=failure
        ):
            with pytest.raises(OperationalError):
                _reward(engine, _context(user_id))

        assert _reward_rows(engine, user_id) == []
        assert _event_count(engine) == 0

    def test_unknown_user_is_an_error(self, engine):
        with pytest.raises(NotFoundError):
            _reward(engine, _context(uuid.uuid4()))

    def test_unexpected_error_propagates(self, engine):
        user_id = _seed_user(engine)

        with patch(
            "tabcoins.services.balance_service.create", side_effect=RuntimeError("boom")
        ):
            with pytest.raises(RuntimeError):
                _reward(engine, _context(user_id))

        assert _event_count(engine) == 0
        assert _rewarded_at(engine, user_id) == LONG_AGO


# ---------------------------------------------------------------------------
# Caller-supplied session
# ---------------------------------------------------------------------------
class TestSuppliedSession:
    def test_reward_joins_caller_transaction(self, db_engine, db_session):
        user = make_user(db_session)
        for index, tabcoins in enumerate((2, 2, 2, 2, 1)):
            content = make_content(
                db_session, user, published_at=NOW - timedelta(days=14, hours=index)
            )
            give_content_tabcoins(db_session, content, tabcoins)

        amount = _reward(db_engine, _context(user.id), session=db_session)

        assert amount == 2
        assert balance_service.find_by_recipient_id(
            db_session, user.id, BalanceType.USER_TABCOIN
        ) == 2
        assert as_utc(db_session.get(User, user.id).rewarded_at) == NOW

    def test_already_stamped_in_caller_transaction(self, db_engine, db_session):
        user = make_user(db_session, rewarded_at=NOW - timedelta(hours=1))

        assert _reward(db_engine, _context(user.id), session=db_session) == 0
        assert balance_service.find_by_recipient_id(
            db_session, user.id, BalanceType.USER_TABCOIN
        ) == 0

    def test_stamp_committed_after_the_guard_read(self, db_engine, db_session):
        user = make_user(db_session, rewarded_at=NOW - timedelta(hours=1))
        content = make_content(db_session, user, published_at=NOW - timedelta(days=14))
        give_content_tabcoins(db_session, content, 2)

        with patch(
            "tabcoins.services.user_service.read_rewarded_at", return_value=LONG_AGO
        ):
            assert _reward(db_engine, _context(user.id), session=db_session) == 0

        assert balance_service.find_by_recipient_id(
            db_session, user.id, BalanceType.USER_TABCOIN
        ) == 0
        assert db_session.scalar(select(func.count()).select_from(Event)) == 0


# ---------------------------------------------------------------------------
# rewarded_at stamp
# ---------------------------------------------------------------------------
class TestRewardStamp:
    def test_stamps_previous_day(self, db_session):
        user = make_user(db_session, rewarded_at=NOW - timedelta(days=1))

        user_service.update_rewarded_at(db_session, user.id, NOW)

        assert as_utc(db_session.get(User, user.id).rewarded_at) == NOW

    @pytest.mark.parametrize("hours_ago", [0, 1, 12])
    def test_refuses_same_day_stamp(self, db_session, hours_ago):
        stamped = NOW - timedelta(hours=hours_ago)
        user = make_user(db_session, rewarded_at=stamped)

        with pytest.raises(AlreadyRewardedError):
            user_service.update_rewarded_at(db_session, user.id, NOW)

        assert user_service.read_rewarded_at(db_session, user.id) == stamped
