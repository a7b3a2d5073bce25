"""
TabCoins — Balance Ledger, Prestige & Daily Reward
===================================================
The reputation economy of a community news site: an append-only ledger
of TabCoin/TabCash balance operations, the ranking score derived from
it, the prestige level earned by a user's recent contents, and the
once-a-day TabCoin reward.

Package layout::

    tabcoins/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Error taxonomy + serialization-failure check
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, sessions + async helper
    │   └── models.py      # ORM models (users, contents, events, ledger)
    ├── engine/
    │   ├── scoring.py     # Content score formula
    │   ├── prestige.py    # Prestige step tables
    │   └── reward.py      # Daily reward calculation pipeline
    └── services/
        ├── ledger_store.py     # Raw append/sum over balance_operations
        ├── balance_service.py  # Create, undo, rate content
        ├── scoring_service.py  # Persisted score upkeep
        ├── prestige_service.py # Prestige window queries
        ├── content_service.py  # Publication credit / deletion debit
        ├── event_service.py    # Originating events
        ├── user_service.py     # rewarded_at reads + stamp
        └── reward_service.py   # Daily reward transaction
"""

__version__ = "0.1.0"
