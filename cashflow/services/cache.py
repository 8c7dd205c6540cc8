"""
Snapshot Cache

Per-user mirror of what a client shows: visible wallets, budgets,
transactions and the most recent activity.

A snapshot is reloaded only when asked to (refresh=True, e.g. on
navigation) or after a committed mutation invalidated it. Between those
points readers get the cached copy and may see stale data.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from cashflow.activity.recorder import ActivityRecorder
from cashflow.config import LedgerSettings, get_settings
from cashflow.models.activity import ActivityEntry
from cashflow.models.ledger import Budget, Caller, Transaction, Wallet, utcnow
from cashflow.queries import LedgerQueries


class LedgerSnapshot(BaseModel):
    """Everything one user's client renders."""

    user_id: str
    wallets: list[Wallet] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    activity: list[ActivityEntry] = Field(default_factory=list)
    loaded_at: datetime = Field(default_factory=utcnow)


class SnapshotCache:
    """Lazily loaded, explicitly invalidated per-user snapshots."""

    def __init__(
        self,
        queries: LedgerQueries,
        recorder: ActivityRecorder,
        settings: Optional[LedgerSettings] = None,
    ):
        self._queries = queries
        self._recorder = recorder
        self._settings = settings or get_settings().ledger
        self._snapshots: dict[str, LedgerSnapshot] = {}
        self._logger = structlog.get_logger(__name__)

    async def snapshot(self, caller: Caller, refresh: bool = False) -> LedgerSnapshot:
        cached = self._snapshots.get(caller.uid)
        if cached is not None and not refresh:
            return cached

        snapshot = LedgerSnapshot(
            user_id=caller.uid,
            wallets=await self._queries.visible_wallets(caller),
            budgets=await self._queries.visible_budgets(caller),
            transactions=await self._queries.visible_transactions(caller),
            activity=await self._recorder.list_activity(
                user_id=caller.uid,
                limit=self._settings.cache_activity_cap,
            ),
        )
        self._snapshots[caller.uid] = snapshot
        self._logger.debug(
            "snapshot_loaded",
            user_id=caller.uid,
            wallets=len(snapshot.wallets),
            transactions=len(snapshot.transactions),
        )
        return snapshot

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop one user's snapshot, or every snapshot when no user is given."""
        if user_id is None:
            self._snapshots.clear()
        else:
            self._snapshots.pop(user_id, None)

    def is_cached(self, user_id: str) -> bool:
        return user_id in self._snapshots
