"""Achievement engine: evaluates the catalog against a child's counters."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from famquest.errors import ValidationError
from famquest.gamification.entities import (
    REFERENCE_ACHIEVEMENT_UNLOCK,
    AchievementDefinition,
    ChildCounterState,
    CriteriaType,
    TransactionType,
)
from famquest.gamification.ledger import build_ledger_entry

logger = logging.getLogger(__name__)


def parse_cutoff(value: str) -> time:
    """Parse an ``HH:MM`` time-of-day cutoff."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid time-of-day cutoff: {value!r}") from exc


class AchievementEngine:
    """Checks unlock criteria and records first-time unlocks."""

    def __init__(self, store) -> None:
        self.store = store
        self._catalog: list[AchievementDefinition] | None = None

    async def _load_catalog(self) -> list[AchievementDefinition]:
        """Load and cache the achievement catalog."""
        if self._catalog is None:
            self._catalog = list(await self.store.get_achievement_catalog())
        return self._catalog

    # ── Criteria ──

    async def _streak_days(self, _definition: AchievementDefinition, counters: ChildCounterState) -> int:
        return counters.current_streak_days

    async def _tasks_completed(self, _definition: AchievementDefinition, counters: ChildCounterState) -> int:
        return counters.total_tasks_completed

    async def _points_earned(self, _definition: AchievementDefinition, counters: ChildCounterState) -> int:
        return counters.total_points_earned

    async def _category_master(self, definition: AchievementDefinition, counters: ChildCounterState) -> int:
        category = definition.criteria_config.get("category")
        if not category:
            raise ValidationError(f"Achievement {definition.id} has no category configured")
        return await self.store.get_category_completion_count(counters.child_id, category)

    async def _time_based(self, definition: AchievementDefinition, counters: ChildCounterState) -> int:
        """Completions approved before the configured local time of day."""
        cutoff = parse_cutoff(definition.criteria_config.get("before", ""))
        profile = await self.store.get_child_profile(counters.child_id)
        family = await self.store.get_family_settings(profile.family_id)
        zone = ZoneInfo(family.timezone)

        count = 0
        for record in await self.store.get_completion_history(counters.child_id):
            approved = record.approved_at
            if approved.tzinfo is None:
                approved = approved.replace(tzinfo=timezone.utc)
            if approved.astimezone(zone).time() < cutoff:
                count += 1
        return count

    _HANDLERS: dict[CriteriaType, str] = {
        CriteriaType.STREAK_DAYS: "_streak_days",
        CriteriaType.TASKS_COMPLETED: "_tasks_completed",
        CriteriaType.POINTS_EARNED: "_points_earned",
        CriteriaType.CATEGORY_MASTER: "_category_master",
        CriteriaType.TIME_BASED: "_time_based",
    }

    def _handler(
        self, criteria_type: CriteriaType,
    ) -> Callable[[AchievementDefinition, ChildCounterState], Awaitable[int]]:
        return getattr(self, self._HANDLERS[criteria_type])

    async def current_value(self, definition: AchievementDefinition, counters: ChildCounterState) -> int:
        """The counter a definition's threshold is compared against."""
        return await self._handler(definition.criteria_type)(definition, counters)

    # ── Unlocking ──

    async def evaluate(
        self, child_id: str, counters: ChildCounterState, now: datetime,
    ) -> list[AchievementDefinition]:
        """Unlock every not-yet-earned achievement whose criteria are met.

        Counters are read once; rewards granted here do not re-trigger the
        check within the same call. Returns the newly unlocked definitions.
        """
        catalog = await self._load_catalog()
        earned = {u.achievement_id for u in await self.store.get_unlocked_achievements(child_id)}

        newly_unlocked: list[AchievementDefinition] = []
        for definition in catalog:
            if definition.id in earned:
                continue
            if await self.current_value(definition, counters) < definition.criteria_value:
                continue
            if await self.unlock(child_id, definition, now):
                newly_unlocked.append(definition)

        return newly_unlocked

    async def unlock(self, child_id: str, definition: AchievementDefinition, now: datetime) -> bool:
        """Record the unlock and grant its rewards. Returns False if already unlocked."""
        if not await self.store.record_unlocked_achievement(child_id, definition.id, now):
            return False

        if definition.points_reward > 0:
            balance = await self.store.get_balance(child_id)
            entry = build_ledger_entry(
                child_id,
                balance,
                TransactionType.BONUS,
                {"achievement": definition.points_reward},
                now,
                reference_type=REFERENCE_ACHIEVEMENT_UNLOCK,
                reference_id=definition.id,
                description=f'Unlocked achievement: "{definition.name}"',
            )
            await self.store.append_ledger_entry(entry)

        if definition.xp_reward > 0:
            counters = await self.store.get_child_counter_state(child_id)
            await self.store.save_counter_state(
                replace(counters, total_xp=counters.total_xp + definition.xp_reward)
            )

        logger.info("Child %s unlocked achievement %s", child_id, definition.id)
        return True


_unhandled = set(CriteriaType) - set(AchievementEngine._HANDLERS)
if _unhandled:
    raise RuntimeError(f"No achievement handler for criteria: {sorted(c.value for c in _unhandled)}")
