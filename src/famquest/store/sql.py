"""SQLAlchemy-backed store.

Writes join the session of the surrounding ``transaction()`` block when one
is active in the current task and open their own short transaction
otherwise. ``append_ledger_entry`` locks the child's ``child_gamification``
row (``SELECT ... FOR UPDATE``) before reading the balance, and the approval
flow takes the same lock before it reads the counters it will advance, so
writes for one child are serialized across processes as well.

All timestamps are written as UTC and read back as aware UTC values;
SQLite hands back naive datetimes.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime, time, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from famquest.config import get_settings
from famquest.db import models
from famquest.errors import NotFoundError
from famquest.gamification.entities import (
    AchievementDefinition,
    ChildCounterState,
    ChildProfile,
    CompletionRecord,
    CriteriaType,
    FamilySettings,
    LedgerEntry,
    TransactionType,
    UnlockedAchievement,
)
from famquest.gamification.ledger import apply_entry, verify_ledger_append
from famquest.gamification.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


def _maybe_utc(dt: datetime | None) -> datetime | None:
    return None if dt is None else as_utc(dt)


def _to_profile(row: models.Child) -> ChildProfile:
    return ChildProfile(
        child_id=row.id,
        family_id=row.family_id,
        display_name=row.display_name,
        created_at=as_utc(row.created_at),
        is_active=row.deleted_at is None,
    )


def _to_completion(row: models.TaskCompletion) -> CompletionRecord:
    return CompletionRecord(
        child_id=row.child_id,
        task_id=row.task_id,
        approved_at=as_utc(row.approved_at),
        task_difficulty=row.difficulty,
        task_category=row.category,
        due_date=_maybe_utc(row.due_date),
    )


def _to_counters(row: models.ChildGamification) -> ChildCounterState:
    return ChildCounterState(
        child_id=row.child_id,
        total_points_earned=row.total_points_earned,
        total_tasks_completed=row.total_tasks_completed,
        total_xp=row.total_xp,
        current_streak_days=row.current_streak_days,
        longest_streak_days=row.longest_streak_days,
        last_streak_date=row.last_streak_date,
    )


def _to_ledger_entry(row: models.PointsLedger) -> LedgerEntry:
    return LedgerEntry(
        child_id=row.child_id,
        transaction_type=TransactionType(row.transaction_type),
        points_amount=row.points_amount,
        balance_after=row.balance_after,
        created_at=as_utc(row.created_at),
        breakdown=dict(row.breakdown or {}),
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        description=row.description,
    )


def _to_definition(row: models.AchievementDefinition) -> AchievementDefinition:
    return AchievementDefinition(
        id=row.id,
        name=row.name,
        description=row.description,
        criteria_type=CriteriaType(row.criteria_type),
        criteria_value=row.criteria_value,
        criteria_config=dict(row.criteria_config or {}),
        tier=row.tier,
        points_reward=row.points_reward,
        xp_reward=row.xp_reward,
    )


def _write_counters(row: models.ChildGamification, state: ChildCounterState) -> None:
    row.total_points_earned = state.total_points_earned
    row.total_tasks_completed = state.total_tasks_completed
    row.total_xp = state.total_xp
    row.current_streak_days = state.current_streak_days
    row.longest_streak_days = state.longest_streak_days
    row.last_streak_date = state.last_streak_date
    row.updated_at = utcnow()


class SqlStore:
    """``GamificationStore`` over the ORM models in ``famquest.db.models``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._active: ContextVar[AsyncSession | None] = ContextVar(
            f"famquest_sql_session_{id(self)}", default=None,
        )

    # ── Sessions ──

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Commit on clean exit, roll back on error. Nested blocks join the outer one."""
        current = self._active.get()
        if current is not None:
            yield current
            return

        async with self._session_factory() as session, session.begin():
            token = self._active.set(session)
            try:
                yield session
            finally:
                self._active.reset(token)

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[AsyncSession]:
        current = self._active.get()
        if current is not None:
            yield current
            return
        async with self._session_factory() as session:
            yield session

    # ── Provisioning ──

    async def create_family(
        self,
        name: str,
        settings: FamilySettings | None = None,
        family_id: str | None = None,
    ) -> str:
        """Insert a family (and its settings row when given). Returns the family id."""
        async with self.transaction() as session:
            family = models.Family(name=name)
            if family_id is not None:
                family.id = family_id
            elif settings is not None:
                family.id = settings.family_id
            session.add(family)
            await session.flush()

            if settings is not None:
                session.add(
                    models.FamilySettings(
                        family_id=family.id,
                        streak_grace_period_hours=settings.streak_grace_period_hours,
                        minimum_tasks_per_day=settings.minimum_tasks_per_day,
                        timezone=settings.timezone,
                        week_start_day=settings.week_start_day,
                        enable_leaderboard=settings.enable_leaderboard,
                    )
                )
            return family.id

    async def create_child(
        self,
        family_id: str,
        display_name: str,
        created_at: datetime | None = None,
        child_id: str | None = None,
    ) -> ChildProfile:
        """Insert a child together with an empty counters row."""
        async with self.transaction() as session:
            if await session.get(models.Family, family_id) is None:
                raise NotFoundError(f"Family not found: {family_id}")

            child = models.Child(
                family_id=family_id,
                display_name=display_name,
                created_at=as_utc(created_at or utcnow()),
            )
            if child_id is not None:
                child.id = child_id
            session.add(child)
            await session.flush()
            session.add(models.ChildGamification(child_id=child.id, updated_at=utcnow()))
            await session.flush()
            return _to_profile(child)

    # ── Families and children ──

    async def get_child_profile(self, child_id: str) -> ChildProfile:
        async with self._reading() as session:
            row = await session.get(models.Child, child_id)
            if row is None:
                raise NotFoundError(f"Child not found: {child_id}")
            return _to_profile(row)

    async def get_family_settings(self, family_id: str) -> FamilySettings:
        async with self._reading() as session:
            if await session.get(models.Family, family_id) is None:
                raise NotFoundError(f"Family not found: {family_id}")
            row = await session.get(models.FamilySettings, family_id)

        if row is None:
            defaults = get_settings()
            return FamilySettings(
                family_id=family_id,
                streak_grace_period_hours=defaults.streak_grace_period_hours,
                minimum_tasks_per_day=defaults.streak_minimum_tasks_per_day,
                timezone=defaults.default_timezone,
                week_start_day=defaults.week_start_day,
            )
        return FamilySettings(
            family_id=family_id,
            streak_grace_period_hours=row.streak_grace_period_hours,
            minimum_tasks_per_day=row.minimum_tasks_per_day,
            timezone=row.timezone,
            week_start_day=row.week_start_day,
            enable_leaderboard=row.enable_leaderboard,
        )

    async def get_family_children(self, family_id: str) -> Sequence[ChildProfile]:
        async with self._reading() as session:
            if await session.get(models.Family, family_id) is None:
                raise NotFoundError(f"Family not found: {family_id}")
            result = await session.execute(
                select(models.Child)
                .where(models.Child.family_id == family_id, models.Child.deleted_at.is_(None))
                .order_by(models.Child.created_at, models.Child.id)
            )
            return [_to_profile(row) for row in result.scalars()]

    async def list_family_ids(self) -> Sequence[str]:
        async with self._reading() as session:
            result = await session.execute(select(models.Family.id).order_by(models.Family.id))
            return list(result.scalars())

    # ── Completion history ──

    async def get_completion_history(
        self, child_id: str, since: date | None = None,
    ) -> Sequence[CompletionRecord]:
        query = select(models.TaskCompletion).where(models.TaskCompletion.child_id == child_id)
        if since is not None:
            start = datetime.combine(since, time.min, tzinfo=timezone.utc)
            query = query.where(models.TaskCompletion.approved_at >= start)
        query = query.order_by(models.TaskCompletion.approved_at, models.TaskCompletion.id)

        async with self._reading() as session:
            result = await session.execute(query)
            return [_to_completion(row) for row in result.scalars()]

    async def record_completion(self, record: CompletionRecord) -> bool:
        approved_at = as_utc(record.approved_at)
        async with self.transaction() as session:
            if await session.get(models.Child, record.child_id) is None:
                raise NotFoundError(f"Child not found: {record.child_id}")
            existing = await session.scalar(
                select(models.TaskCompletion.id).where(
                    models.TaskCompletion.child_id == record.child_id,
                    models.TaskCompletion.task_id == record.task_id,
                    models.TaskCompletion.approved_at == approved_at,
                )
            )
            if existing is not None:
                return False

            session.add(
                models.TaskCompletion(
                    child_id=record.child_id,
                    task_id=record.task_id,
                    approved_at=approved_at,
                    difficulty=record.task_difficulty,
                    category=record.task_category,
                    due_date=_maybe_utc(record.due_date),
                )
            )
            await session.flush()
            return True

    async def get_category_completion_count(self, child_id: str, category: str) -> int:
        async with self._reading() as session:
            count = await session.scalar(
                select(func.count(models.TaskCompletion.id)).where(
                    models.TaskCompletion.child_id == child_id,
                    models.TaskCompletion.category == category,
                )
            )
            return int(count or 0)

    async def count_completions_between(self, child_id: str, start: datetime, end: datetime) -> int:
        async with self._reading() as session:
            count = await session.scalar(
                select(func.count(models.TaskCompletion.id)).where(
                    models.TaskCompletion.child_id == child_id,
                    models.TaskCompletion.approved_at >= as_utc(start),
                    models.TaskCompletion.approved_at < as_utc(end),
                )
            )
            return int(count or 0)

    # ── Counters ──

    async def _counter_row(
        self, session: AsyncSession, child_id: str, for_update: bool = False,
    ) -> models.ChildGamification:
        query = select(models.ChildGamification).where(models.ChildGamification.child_id == child_id)
        if for_update:
            # refresh a row this session may already hold from an unlocked read
            query = query.with_for_update().execution_options(populate_existing=True)
        row = await session.scalar(query)
        if row is None:
            raise NotFoundError(f"No counter state for child: {child_id}")
        return row

    async def get_child_counter_state(self, child_id: str, for_update: bool = False) -> ChildCounterState:
        """Counters for a child.

        With ``for_update`` inside ``transaction()`` the row stays locked until
        commit, so a read-modify-write of the counters cannot interleave with
        another process.
        """
        async with self._reading() as session:
            return _to_counters(await self._counter_row(session, child_id, for_update=for_update))

    async def save_counter_state(self, state: ChildCounterState) -> None:
        async with self.transaction() as session:
            row = await self._counter_row(session, state.child_id, for_update=True)
            _write_counters(row, state)
            await session.flush()

    # ── Ledger ──

    @staticmethod
    async def _balance(session: AsyncSession, child_id: str) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(models.PointsLedger.points_amount), 0)).where(
                models.PointsLedger.child_id == child_id
            )
        )
        return int(total or 0)

    async def get_balance(self, child_id: str) -> int:
        async with self._reading() as session:
            return await self._balance(session, child_id)

    async def get_ledger(
        self, child_id: str, offset: int = 0, limit: int | None = None, newest_first: bool = False,
    ) -> Sequence[LedgerEntry]:
        order = models.PointsLedger.id.desc() if newest_first else models.PointsLedger.id.asc()
        query = (
            select(models.PointsLedger)
            .where(models.PointsLedger.child_id == child_id)
            .order_by(order)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        async with self._reading() as session:
            result = await session.execute(query)
            return [_to_ledger_entry(row) for row in result.scalars()]

    async def count_ledger_entries(self, child_id: str) -> int:
        async with self._reading() as session:
            count = await session.scalar(
                select(func.count(models.PointsLedger.id)).where(models.PointsLedger.child_id == child_id)
            )
            return int(count or 0)

    async def append_ledger_entry(
        self, entry: LedgerEntry, counters: ChildCounterState | None = None,
    ) -> ChildCounterState:
        async with self.transaction() as session:
            row = await self._counter_row(session, entry.child_id, for_update=True)
            verify_ledger_append(await self._balance(session, entry.child_id), entry)

            session.add(
                models.PointsLedger(
                    child_id=entry.child_id,
                    transaction_type=entry.transaction_type.value,
                    points_amount=entry.points_amount,
                    balance_after=entry.balance_after,
                    breakdown=dict(entry.breakdown),
                    reference_type=entry.reference_type,
                    reference_id=entry.reference_id,
                    description=entry.description,
                    created_at=as_utc(entry.created_at),
                )
            )
            updated = apply_entry(counters or _to_counters(row), entry)
            _write_counters(row, updated)
            await session.flush()
            return updated

    async def sum_points_between(
        self,
        child_id: str,
        start: datetime,
        end: datetime,
        transaction_type: TransactionType = TransactionType.EARNED,
    ) -> int:
        async with self._reading() as session:
            total = await session.scalar(
                select(func.coalesce(func.sum(models.PointsLedger.points_amount), 0)).where(
                    models.PointsLedger.child_id == child_id,
                    models.PointsLedger.transaction_type == transaction_type.value,
                    models.PointsLedger.created_at >= as_utc(start),
                    models.PointsLedger.created_at < as_utc(end),
                )
            )
            return int(total or 0)

    # ── Achievements ──

    async def get_achievement_catalog(self) -> Sequence[AchievementDefinition]:
        async with self._reading() as session:
            result = await session.execute(
                select(models.AchievementDefinition)
                .where(models.AchievementDefinition.is_active.is_(True))
                .order_by(models.AchievementDefinition.sort_order, models.AchievementDefinition.id)
            )
            return [_to_definition(row) for row in result.scalars()]

    async def get_unlocked_achievements(self, child_id: str) -> Sequence[UnlockedAchievement]:
        async with self._reading() as session:
            result = await session.execute(
                select(models.UnlockedAchievement)
                .where(models.UnlockedAchievement.child_id == child_id)
                .order_by(models.UnlockedAchievement.unlocked_at, models.UnlockedAchievement.id)
            )
            return [
                UnlockedAchievement(row.child_id, row.achievement_id, as_utc(row.unlocked_at))
                for row in result.scalars()
            ]

    async def record_unlocked_achievement(
        self, child_id: str, achievement_id: str, unlocked_at: datetime,
    ) -> bool:
        async with self.transaction() as session:
            if await session.get(models.AchievementDefinition, achievement_id) is None:
                raise NotFoundError(f"Achievement not found: {achievement_id}")
            existing = await session.scalar(
                select(models.UnlockedAchievement.id).where(
                    models.UnlockedAchievement.child_id == child_id,
                    models.UnlockedAchievement.achievement_id == achievement_id,
                )
            )
            if existing is not None:
                return False

            session.add(
                models.UnlockedAchievement(
                    child_id=child_id,
                    achievement_id=achievement_id,
                    unlocked_at=as_utc(unlocked_at),
                )
            )
            await session.flush()
            logger.debug("Stored unlock %s for child %s", achievement_id, child_id)
            return True
