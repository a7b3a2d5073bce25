"""
tabcoins.database.engine — Database Connection & Async Helper
==============================================================

**Why this file exists:**
Request handlers calling the ledger run on an ``asyncio`` event loop, while
SQLAlchemy + psycopg2 is **synchronous**.  Every service in
:mod:`tabcoins.services` is a plain synchronous function that receives an
explicit :class:`~sqlalchemy.orm.Session`; async callers ship them to a
thread with :func:`run_db`.

Nothing in this package keeps a module-level engine or connection.  The
engine is built once by the application and handed down explicitly.

Usage::

    from tabcoins.database.engine import create_db_engine, get_session, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    with get_session(engine) as session:
        balance_service.create(session, balance_type="user:tabcoin", ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from dotenv import load_dotenv
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from tabcoins.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    Ledger calls are short request-scoped transactions, so a small pool
    (5 + 10 overflow) with pre-ping and hourly recycling is enough.  A
    caller waits at most 10 s for a free connection.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    if url is None:
        load_dotenv()
        url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "No database URL given and DATABASE_URL is unset.  "
            "Set it in the environment or in .env (see .env.example)."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Ledger database engine ready (%s)", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`tabcoins.database.models`.

    Production databases are migrated with ``alembic upgrade head``;
    this is for local databases and tests.
    """
    Base.metadata.create_all(engine)
    logger.info("Ledger tables created (if missing).")


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine, isolation_level: str | None = None) -> Iterator[Session]:
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    When *isolation_level* is given (e.g. ``"REPEATABLE READ"``) the
    session's transaction is started on a connection with that level.

    Usage::

        with get_session(engine) as session:
            balance_service.create(session, ...)
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        if isolation_level is not None:
            session.connection(execution_options={"isolation_level": isolation_level})
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every ledger call made from async request handling should go through
    this wrapper::

        amount = await run_db(reward_service.reward, engine, context)

    Under the hood it calls :func:`asyncio.to_thread`, so the event loop
    is never blocked by a query.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
