"""
tabcoins.engine.reward — Daily Reward Calculation
==================================================

Pure calculation pipeline.  No DB I/O inside the engine.

Pipeline stages:
  RequestContext → Precondition → TabCoins factor → Prestige gate
                 → Content-age factor → Reward amount

    tabcoins_factor    = floor((tabcoins / 20) ** 2)        (0 if tabcoins <= 0)
    content_age_factor = ceil(age_of_last_published_content / 1 week)   (from created_at)
    reward             = ceil((prestige - tabcoins_factor) / content_age_factor)
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from tabcoins.config import DEFAULT_CONFIG, TabcoinsConfig


# ---------------------------------------------------------------------------
# Input envelope
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class UserSnapshot:
    """The requesting user as the request layer loaded it.

    Fields may be ``None`` for anonymous or partially loaded users; such
    users are never rewarded.
    """

    id: uuid.UUID | None
    username: str | None
    tabcoins: int | None
    rewarded_at: datetime | None


@dataclass(frozen=True, slots=True)
class RequestContext:
    """What the reward needs to know about the incoming request."""

    user: UserSnapshot | None = None
    client_ip: str | None = None


# ---------------------------------------------------------------------------
# Stage helpers
# ---------------------------------------------------------------------------
def utc_midnight(now: datetime | None = None) -> datetime:
    """Start of the current UTC calendar day."""
    now = (now or datetime.now(UTC)).astimezone(UTC)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def rewarded_today(rewarded_at: datetime, now: datetime | None = None) -> bool:
    if rewarded_at.tzinfo is None:
        rewarded_at = rewarded_at.replace(tzinfo=UTC)
    return rewarded_at >= utc_midnight(now)


def is_eligible_context(context: RequestContext | None) -> bool:
    """The user must be loaded with id, username, tabcoins and rewarded_at."""
    if context is None or context.user is None:
        return False
    user = context.user
    return (
        user.tabcoins is not None
        and bool(user.id)
        and bool(user.username)
        and user.rewarded_at is not None
    )


def calculate_tabcoins_factor(tabcoins: int, config: TabcoinsConfig = DEFAULT_CONFIG) -> int:
    if tabcoins <= 0:
        return 0
    return math.floor((tabcoins / config.tabcoins_base) ** 2)


def calculate_content_age_factor(
    last_content_created_at: datetime | None,
    now: datetime | None = None,
    config: TabcoinsConfig = DEFAULT_CONFIG,
) -> int:
    """Weeks (rounded up) since the last published content was created;
    0 if the user never published."""
    if last_content_created_at is None:
        return 0
    if last_content_created_at.tzinfo is None:
        last_content_created_at = last_content_created_at.replace(tzinfo=UTC)
    age: timedelta = (now or datetime.now(UTC)) - last_content_created_at
    return math.ceil(age / config.content_age_base)


def calculate_reward(prestige: int, tabcoins_factor: int, content_age_factor: int) -> int:
    if content_age_factor <= 0 or prestige <= tabcoins_factor:
        return 0
    return math.ceil((prestige - tabcoins_factor) / content_age_factor)
