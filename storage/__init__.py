"""
Storage Module
Repository interfaces with in-memory and SQLite implementations.
"""
from .repositories import (
    EpisodeRepository,
    InMemoryEpisodeRepository,
    InMemoryLedgerRepository,
    InMemoryTrendRepository,
    LedgerRepository,
    TrendRepository,
    TrendRow,
    TrendSource,
)
from .sqlite_store import (
    SQLiteEpisodeRepository,
    SQLiteLedgerRepository,
    SQLiteTrendRepository,
    open_sqlite_repositories,
)

__all__ = [
    "TrendRepository",
    "EpisodeRepository",
    "LedgerRepository",
    "TrendSource",
    "TrendRow",
    "InMemoryTrendRepository",
    "InMemoryEpisodeRepository",
    "InMemoryLedgerRepository",
    "SQLiteTrendRepository",
    "SQLiteEpisodeRepository",
    "SQLiteLedgerRepository",
    "open_sqlite_repositories",
]
