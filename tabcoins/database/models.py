"""
tabcoins.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- users               — Community members (only the columns the ledger needs)
- contents            — Root posts and comments, with the cached ranking score
- events              — Originating actions (votes, rewards, publications)
- balance_operations  — Append-only TabCoin/TabCash ledger

A balance is never stored.  It is always ``SUM(amount)`` over
``balance_operations``; corrections are new rows, never updates.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class BalanceType(enum.StrEnum):
    """Which ledger a balance operation belongs to."""
    USER_TABCOIN = "user:tabcoin"
    USER_TABCASH = "user:tabcash"
    CONTENT_TABCOIN = "content:tabcoin"
    CONTENT_TABCOIN_CREDIT = "content:tabcoin:credit"
    CONTENT_TABCOIN_DEBIT = "content:tabcoin:debit"

    @property
    def is_content(self) -> bool:
        return self.value.startswith("content:")

    def ledger_types(self) -> tuple[BalanceType, ...]:
        """Row types summed to obtain this balance.

        The content TabCoin balance spans the publication credit and
        every up/down vote; all other balances are a single row type.
        """
        if self is BalanceType.CONTENT_TABCOIN:
            return CONTENT_TABCOIN_TYPES
        return (self,)


CONTENT_TABCOIN_TYPES: tuple[BalanceType, ...] = (
    BalanceType.CONTENT_TABCOIN,
    BalanceType.CONTENT_TABCOIN_CREDIT,
    BalanceType.CONTENT_TABCOIN_DEBIT,
)


class OriginatorType(enum.StrEnum):
    """What caused a balance operation."""
    EVENT = "event"
    USER = "user"
    CONTENT = "content"
    UNDO = "undo"


class EventType(enum.StrEnum):
    """Event types produced or consumed by the ledger."""
    REWARD_USER_TABCOINS = "reward:user:tabcoins"
    UPDATE_CONTENT_TABCOINS = "update:content:tabcoins"
    CREATE_CONTENT_TEXT_ROOT = "create:content:text_root"
    CREATE_CONTENT_TEXT_CHILD = "create:content:text_child"
    UPDATE_CONTENT_TEXT_ROOT = "update:content:text_root"
    UPDATE_CONTENT_TEXT_CHILD = "update:content:text_child"


class ContentStatus(enum.StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    DELETED = "deleted"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    rewarded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    contents: Mapped[list[Content]] = relationship(back_populates="owner")

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"


# ---------------------------------------------------------------------------
# Contents: root posts (parent_id IS NULL) and comments
# ---------------------------------------------------------------------------
class Content(Base):
    __tablename__ = "contents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contents.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str | None] = mapped_column(String(255), default=None)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContentStatus.DRAFT.value
    )
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    # Derived cache; the ledger is the source of truth.
    score: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)

    owner: Mapped[User] = relationship(back_populates="contents")

    __table_args__ = (
        Index("ix_contents_score_created_at", "score", "created_at"),
        Index("ix_contents_owner_published", "owner_id", "status", "published_at"),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def __repr__(self) -> str:
        return f"<Content id={self.id} status={self.status!r} score={self.score}>"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    originator_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    originator_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_events_type_originator", "type", "originator_user_id"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} type={self.type!r}>"


# ---------------------------------------------------------------------------
# BalanceOperation (append-only ledger)
# ---------------------------------------------------------------------------
class BalanceOperation(Base):
    """One immutable credit or debit.

    ``originator_type``/``originator_id`` is a polymorphic reference
    (event, user, content or the undone operation) and has
    no foreign key.
    """
    __tablename__ = "balance_operations"

    sequence: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, unique=True, default=uuid.uuid4
    )
    balance_type: Mapped[str] = mapped_column(String(32), nullable=False)
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    originator_type: Mapped[str] = mapped_column(String(16), nullable=False)
    originator_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_balance_operations_recipient_type", "recipient_id", "balance_type"),
        Index("ix_balance_operations_originator", "originator_id"),
        # One reversal per operation.
        Index(
            "uq_balance_operations_undo_originator",
            "originator_id",
            unique=True,
            postgresql_where=text("originator_type = 'undo'"),
            sqlite_where=text("originator_type = 'undo'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceOperation seq={self.sequence} type={self.balance_type} "
            f"recipient={self.recipient_id} amount={self.amount}>"
        )
