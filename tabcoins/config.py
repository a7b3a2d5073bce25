"""
tabcoins.config — YAML Configuration Loader
============================================

Tuning values for the ledger, the prestige window and the daily reward
are read from ``config.yaml``.  Secrets (``DATABASE_URL``) live in the
environment, see :mod:`tabcoins.database.engine`.

Every key is optional; missing keys fall back to the defaults below,
which are the production values.  :data:`DEFAULT_CONFIG` is used by
every service when the caller does not pass a config.

Usage::

    from tabcoins.config import load_config

    cfg = load_config()            # reads ./config.yaml by default
    print(cfg.tabcoins_base)       # 20
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TabcoinsConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Daily reward
    tabcoins_base: int = 20
    content_age_base_days: int = 7
    reward_isolation_level: str | None = "REPEATABLE READ"

    # Prestige window
    prestige_limit: int = 20
    prestige_offset: int = 3
    prestige_time_offset_days: int = 2

    # Content rating
    rating_cost: int = 2
    rating_cooldown_hours: int = 72

    @property
    def content_age_base(self) -> timedelta:
        return timedelta(days=self.content_age_base_days)

    @property
    def prestige_time_offset(self) -> timedelta:
        return timedelta(days=self.prestige_time_offset_days)

    @property
    def rating_cooldown(self) -> timedelta:
        return timedelta(hours=self.rating_cooldown_hours)


DEFAULT_CONFIG = TabcoinsConfig()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TabcoinsConfig:
    """Read *path* and return a :class:`TabcoinsConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If the file contains a key this version doesn't know.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    known = {f.name for f in fields(TabcoinsConfig)}
    unknown = set(raw) - known
    if unknown:
        raise KeyError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    values: dict[str, object] = {}
    for key, value in raw.items():
        if key == "reward_isolation_level":
            values[key] = str(value) if value else None
        else:
            values[key] = int(value)
    return TabcoinsConfig(**values)
