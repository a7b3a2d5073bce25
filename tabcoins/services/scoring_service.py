"""
tabcoins.services.scoring_service — Persisted Content Score
============================================================

Recomputes ``contents.score`` from the ledger.  The column is a cache for
ranked listings; running the recompute twice without a ledger change
yields the same value.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from tabcoins.database.models import Content
from tabcoins.engine.scoring import calculate_score
from tabcoins.services import ledger_store

logger = logging.getLogger(__name__)


def update_content_score(session: Session, content_id: uuid.UUID) -> Decimal:
    """Recompute, persist and return the score of *content_id*."""
    positive, negative = ledger_store.sum_credit_debit(session, content_id)
    score = calculate_score(positive, negative)

    session.execute(
        update(Content)
        .where(Content.id == content_id)
        .values(score=score)
        .execution_options(synchronize_session="fetch")
    )
    logger.debug(
        "Content %s score → %s (positive=%d negative=%d)",
        content_id, score, positive, negative,
    )
    return score
