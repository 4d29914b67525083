"""In-memory store for tests and local runs.

Transactions keep an undo journal per asyncio task (via a ContextVar), so
a failed approval event rolls back only its own writes even when events
for other children are interleaved on the same loop.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import replace
from datetime import date, datetime

from famquest.errors import NotFoundError
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
from famquest.gamification.ledger import apply_entry, verify_ledger_append
from famquest.gamification.time_utils import as_utc

_undo_journal: ContextVar[list[Callable[[], None]] | None] = ContextVar(
    "famquest_memory_undo", default=None,
)


class InMemoryStore:
    """Dict-backed implementation of ``GamificationStore``."""

    def __init__(self) -> None:
        self._families: dict[str, FamilySettings] = {}
        self._children: dict[str, ChildProfile] = {}
        self._counters: dict[str, ChildCounterState] = {}
        self._completions: dict[str, list[CompletionRecord]] = defaultdict(list)
        self._ledger: dict[str, list[LedgerEntry]] = defaultdict(list)
        self._catalog: dict[str, AchievementDefinition] = {}
        self._unlocked: dict[tuple[str, str], UnlockedAchievement] = {}

    # ── Setup helpers ──

    def add_family(self, settings: FamilySettings) -> None:
        self._families[settings.family_id] = settings

    def add_child(self, profile: ChildProfile) -> None:
        if profile.family_id not in self._families:
            self._families[profile.family_id] = FamilySettings(family_id=profile.family_id)
        self._children[profile.child_id] = replace(profile, created_at=as_utc(profile.created_at))
        self._counters.setdefault(profile.child_id, ChildCounterState(child_id=profile.child_id))

    def add_achievement(self, definition: AchievementDefinition) -> None:
        self._catalog[definition.id] = definition

    # ── Transactions ──

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryStore]:
        if _undo_journal.get() is not None:
            yield self
            return

        journal: list[Callable[[], None]] = []
        token = _undo_journal.set(journal)
        try:
            yield self
        except BaseException:
            for undo in reversed(journal):
                undo()
            raise
        finally:
            _undo_journal.reset(token)

    def _on_rollback(self, undo: Callable[[], None]) -> None:
        journal = _undo_journal.get()
        if journal is not None:
            journal.append(undo)

    # ── Families and children ──

    async def get_child_profile(self, child_id: str) -> ChildProfile:
        profile = self._children.get(child_id)
        if profile is None:
            raise NotFoundError(f"Child not found: {child_id}")
        return profile

    async def get_family_settings(self, family_id: str) -> FamilySettings:
        settings = self._families.get(family_id)
        if settings is None:
            raise NotFoundError(f"Family not found: {family_id}")
        return settings

    async def get_family_children(self, family_id: str) -> Sequence[ChildProfile]:
        await self.get_family_settings(family_id)
        children = [c for c in self._children.values() if c.family_id == family_id and c.is_active]
        return sorted(children, key=lambda c: (c.created_at, c.child_id))

    async def list_family_ids(self) -> Sequence[str]:
        return sorted(self._families)

    # ── Completion history ──

    async def get_completion_history(
        self, child_id: str, since: date | None = None,
    ) -> Sequence[CompletionRecord]:
        records = self._completions.get(child_id, [])
        if since is not None:
            records = [r for r in records if as_utc(r.approved_at).date() >= since]
        return sorted(records, key=lambda r: as_utc(r.approved_at))

    async def record_completion(self, record: CompletionRecord) -> bool:
        await self.get_child_profile(record.child_id)
        records = self._completions[record.child_id]
        if any(r.task_id == record.task_id and r.approved_at == record.approved_at for r in records):
            return False
        records.append(record)
        self._on_rollback(lambda: records.remove(record))
        return True

    async def get_category_completion_count(self, child_id: str, category: str) -> int:
        return sum(1 for r in self._completions.get(child_id, []) if r.task_category == category)

    async def count_completions_between(self, child_id: str, start: datetime, end: datetime) -> int:
        start, end = as_utc(start), as_utc(end)
        return sum(
            1 for r in self._completions.get(child_id, []) if start <= as_utc(r.approved_at) < end
        )

    # ── Counters ──

    async def get_child_counter_state(self, child_id: str, for_update: bool = False) -> ChildCounterState:
        state = self._counters.get(child_id)
        if state is None:
            raise NotFoundError(f"No counter state for child: {child_id}")
        return state

    async def save_counter_state(self, state: ChildCounterState) -> None:
        previous = await self.get_child_counter_state(state.child_id)
        self._counters[state.child_id] = state
        self._on_rollback(lambda: self._counters.__setitem__(state.child_id, previous))

    # ── Ledger ──

    async def get_balance(self, child_id: str) -> int:
        return sum(e.points_amount for e in self._ledger.get(child_id, []))

    async def get_ledger(
        self, child_id: str, offset: int = 0, limit: int | None = None, newest_first: bool = False,
    ) -> Sequence[LedgerEntry]:
        entries = list(self._ledger.get(child_id, []))
        if newest_first:
            entries.reverse()
        end = None if limit is None else offset + limit
        return entries[offset:end]

    async def count_ledger_entries(self, child_id: str) -> int:
        return len(self._ledger.get(child_id, []))

    async def append_ledger_entry(
        self, entry: LedgerEntry, counters: ChildCounterState | None = None,
    ) -> ChildCounterState:
        current = await self.get_child_counter_state(entry.child_id)
        verify_ledger_append(await self.get_balance(entry.child_id), entry)

        entries = self._ledger[entry.child_id]
        entries.append(entry)
        self._on_rollback(entries.pop)

        updated = apply_entry(counters or current, entry)
        await self.save_counter_state(updated)
        return updated

    async def sum_points_between(
        self,
        child_id: str,
        start: datetime,
        end: datetime,
        transaction_type: TransactionType = TransactionType.EARNED,
    ) -> int:
        start, end = as_utc(start), as_utc(end)
        return sum(
            e.points_amount
            for e in self._ledger.get(child_id, [])
            if e.transaction_type == transaction_type and start <= e.created_at < end
        )

    # ── Achievements ──

    async def get_achievement_catalog(self) -> Sequence[AchievementDefinition]:
        return list(self._catalog.values())

    async def get_unlocked_achievements(self, child_id: str) -> Sequence[UnlockedAchievement]:
        unlocked = [u for (cid, _), u in self._unlocked.items() if cid == child_id]
        return sorted(unlocked, key=lambda u: u.unlocked_at)

    async def record_unlocked_achievement(
        self, child_id: str, achievement_id: str, unlocked_at: datetime,
    ) -> bool:
        if achievement_id not in self._catalog:
            raise NotFoundError(f"Achievement not found: {achievement_id}")
        key = (child_id, achievement_id)
        if key in self._unlocked:
            return False
        self._unlocked[key] = UnlockedAchievement(child_id, achievement_id, as_utc(unlocked_at))
        self._on_rollback(lambda: self._unlocked.pop(key, None))
        return True
