"""Storage interface the gamification core reads from and appends to.

Any backend works (relational, document, in-memory) as long as
``append_ledger_entry`` checks the running balance and the counter update
commits or rolls back together with the entry.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Any, Protocol

from famquest.gamification.entities import (
    AchievementDefinition,
    ChildCounterState,
    ChildProfile,
    CompletionRecord,
    FamilySettings,
    LedgerEntry,
    TransactionType,
    UnlockedAchievement,
)


class GamificationStore(Protocol):
    # ── Transactions ──
    def transaction(self) -> AbstractAsyncContextManager[Any]: ...

    # ── Families and children ──
    async def get_child_profile(self, child_id: str) -> ChildProfile: ...
    async def get_family_settings(self, family_id: str) -> FamilySettings: ...
    async def get_family_children(self, family_id: str) -> Sequence[ChildProfile]: ...
    async def list_family_ids(self) -> Sequence[str]: ...

    # ── Completion history (task store) ──
    async def get_completion_history(
        self, child_id: str, since: date | None = None,
    ) -> Sequence[CompletionRecord]: ...
    async def record_completion(self, record: CompletionRecord) -> bool: ...
    async def get_category_completion_count(self, child_id: str, category: str) -> int: ...
    async def count_completions_between(
        self, child_id: str, start: datetime, end: datetime,
    ) -> int: ...

    # ── Counters ──
    async def get_child_counter_state(
        self, child_id: str, for_update: bool = False,
    ) -> ChildCounterState: ...
    async def save_counter_state(self, state: ChildCounterState) -> None: ...

    # ── Ledger ──
    async def get_balance(self, child_id: str) -> int: ...
    async def get_ledger(
        self, child_id: str, offset: int = 0, limit: int | None = None, newest_first: bool = False,
    ) -> Sequence[LedgerEntry]: ...
    async def count_ledger_entries(self, child_id: str) -> int: ...
    async def append_ledger_entry(
        self, entry: LedgerEntry, counters: ChildCounterState | None = None,
    ) -> ChildCounterState: ...
    async def sum_points_between(
        self,
        child_id: str,
        start: datetime,
        end: datetime,
        transaction_type: TransactionType = TransactionType.EARNED,
    ) -> int: ...

    # ── Achievements ──
    async def get_achievement_catalog(self) -> Sequence[AchievementDefinition]: ...
    async def get_unlocked_achievements(self, child_id: str) -> Sequence[UnlockedAchievement]: ...
    async def record_unlocked_achievement(
        self, child_id: str, achievement_id: str, unlocked_at: datetime,
    ) -> bool: ...


async def iter_family_children(store: GamificationStore) -> AsyncIterator[ChildProfile]:
    """Every active child across all families."""
    for family_id in await store.list_family_ids():
        for child in await store.get_family_children(family_id):
            yield child
