"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from tabcoins.config import TabcoinsConfig
from tabcoins.database.models import (
    Base,
    BalanceOperation,
    BalanceType,
    Content,
    ContentStatus,
    OriginatorType,
    User,
)

# Fixed clock for every DB test: mid-day UTC, so "today" is unambiguous.
NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)
LONG_AGO = datetime(2021, 1, 1, tzinfo=UTC)

# SQLite has no REPEATABLE READ; tests run the reward transaction at the
# driver default.
TEST_CONFIG = TabcoinsConfig(reward_isolation_level=None)

RELEVANT_BODY = "Bodies need enough meaningful words before earning anything."

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so the ledger sequence autoincrements.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all ledger tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Factories: usable with any session; they flush but never commit.
# ---------------------------------------------------------------------------
def make_user(
    session: Session,
    username: str | None = None,
    rewarded_at: datetime = LONG_AGO,
) -> User:
    user = User(
        username=username or f"user_{uuid.uuid4().hex[:8]}",
        rewarded_at=rewarded_at,
    )
    session.add(user)
    session.flush()
    return user


def make_content(
    session: Session,
    owner: User,
    *,
    parent: Content | None = None,
    body: str = RELEVANT_BODY,
    status: ContentStatus = ContentStatus.PUBLISHED,
    published_at: datetime | None = None,
    created_at: datetime | None = None,
) -> Content:
    """Published contents default to ten days before ``NOW``; *created_at*
    defaults to the publication time (the server default is the real clock)."""
    if published_at is None and status is ContentStatus.PUBLISHED:
        published_at = NOW - timedelta(days=10)
    content = Content(
        owner_id=owner.id,
        parent_id=parent.id if parent is not None else None,
        body=body,
        status=status.value,
        published_at=published_at,
        created_at=created_at or published_at or NOW - timedelta(days=10),
    )
    session.add(content)
    session.flush()
    return content


def add_operation(
    session: Session,
    recipient_id: uuid.UUID,
    amount: int,
    balance_type: BalanceType = BalanceType.USER_TABCOIN,
    originator_type: OriginatorType = OriginatorType.USER,
    originator_id: uuid.UUID | None = None,
) -> BalanceOperation:
    """Insert a raw ledger row, bypassing validation and score upkeep."""
    operation = BalanceOperation(
        balance_type=balance_type.value,
        recipient_id=recipient_id,
        amount=amount,
        originator_type=originator_type.value,
        originator_id=originator_id or uuid.uuid4(),
    )
    session.add(operation)
    session.flush()
    return operation


def give_content_tabcoins(session: Session, content: Content, tabcoins: int) -> None:
    """Publication credit plus enough votes to reach *tabcoins*."""
    add_operation(session, content.id, 1, BalanceType.CONTENT_TABCOIN, OriginatorType.CONTENT, content.id)
    votes = tabcoins - 1
    if votes > 0:
        add_operation(session, content.id, votes, BalanceType.CONTENT_TABCOIN_CREDIT, OriginatorType.EVENT)
    elif votes < 0:
        add_operation(session, content.id, votes, BalanceType.CONTENT_TABCOIN_DEBIT, OriginatorType.EVENT)
