"""Default achievement catalog."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.db import models
from famquest.gamification.entities import AchievementDefinition, CriteriaType

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Getting started
    {
        "id": "first_task",
        "name": "First Steps",
        "description": "Complete your very first task",
        "criteria_type": "tasks_completed",
        "criteria_value": 1,
        "tier": "bronze",
        "points_reward": 10,
        "xp_reward": 25,
        "sort_order": 1,
    },
    {
        "id": "tasks_25",
        "name": "Helping Hand",
        "description": "Complete 25 tasks",
        "criteria_type": "tasks_completed",
        "criteria_value": 25,
        "tier": "silver",
        "points_reward": 25,
        "xp_reward": 75,
        "sort_order": 2,
    },
    {
        "id": "tasks_100",
        "name": "Task Machine",
        "description": "Complete 100 tasks",
        "criteria_type": "tasks_completed",
        "criteria_value": 100,
        "tier": "gold",
        "points_reward": 100,
        "xp_reward": 250,
        "sort_order": 3,
    },
    # Streaks
    {
        "id": "streak_3",
        "name": "On a Roll",
        "description": "Keep a 3-day streak",
        "criteria_type": "streak_days",
        "criteria_value": 3,
        "tier": "bronze",
        "points_reward": 15,
        "xp_reward": 30,
        "sort_order": 10,
    },
    {
        "id": "streak_7",
        "name": "Week Warrior",
        "description": "Keep a 7-day streak",
        "criteria_type": "streak_days",
        "criteria_value": 7,
        "tier": "silver",
        "points_reward": 35,
        "xp_reward": 70,
        "sort_order": 11,
    },
    {
        "id": "streak_30",
        "name": "Unstoppable",
        "description": "Keep a 30-day streak",
        "criteria_type": "streak_days",
        "criteria_value": 30,
        "tier": "gold",
        "points_reward": 150,
        "xp_reward": 300,
        "sort_order": 12,
    },
    # Points
    {
        "id": "points_500",
        "name": "Piggy Bank",
        "description": "Earn 500 points",
        "criteria_type": "points_earned",
        "criteria_value": 500,
        "tier": "silver",
        "points_reward": 0,
        "xp_reward": 100,
        "sort_order": 20,
    },
    {
        "id": "points_2500",
        "name": "Treasure Chest",
        "description": "Earn 2,500 points",
        "criteria_type": "points_earned",
        "criteria_value": 2500,
        "tier": "gold",
        "points_reward": 0,
        "xp_reward": 300,
        "sort_order": 21,
    },
    # Categories
    {
        "id": "kitchen_master",
        "name": "Kitchen Master",
        "description": "Complete 20 kitchen tasks",
        "criteria_type": "category_master",
        "criteria_value": 20,
        "criteria_config": {"category": "kitchen"},
        "tier": "silver",
        "points_reward": 30,
        "xp_reward": 80,
        "sort_order": 30,
    },
    {
        "id": "homework_hero",
        "name": "Homework Hero",
        "description": "Complete 20 homework tasks",
        "criteria_type": "category_master",
        "criteria_value": 20,
        "criteria_config": {"category": "homework"},
        "tier": "silver",
        "points_reward": 30,
        "xp_reward": 80,
        "sort_order": 31,
    },
    # Time of day
    {
        "id": "early_bird",
        "name": "Early Bird",
        "description": "Finish 10 tasks before 8 AM",
        "criteria_type": "time_based",
        "criteria_value": 10,
        "criteria_config": {"before": "08:00"},
        "tier": "silver",
        "points_reward": 20,
        "xp_reward": 60,
        "sort_order": 40,
    },
]


def to_definition(data: dict) -> AchievementDefinition:
    return AchievementDefinition(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        criteria_type=CriteriaType(data["criteria_type"]),
        criteria_value=data["criteria_value"],
        criteria_config=dict(data.get("criteria_config") or {}),
        tier=data.get("tier", "bronze"),
        points_reward=data.get("points_reward", 0),
        xp_reward=data.get("xp_reward", 0),
    )


def default_catalog() -> list[AchievementDefinition]:
    return [to_definition(data) for data in ACHIEVEMENT_SEED_DATA]


async def seed_achievements(db: AsyncSession) -> int:
    """Insert missing achievement definitions, update existing ones. Returns rows written."""
    existing = {
        row.id: row
        for row in (await db.execute(select(models.AchievementDefinition))).scalars()
    }

    seeded = 0
    for data in ACHIEVEMENT_SEED_DATA:
        values = {"criteria_config": {}, **data}
        row = existing.get(data["id"])
        if row is None:
            db.add(models.AchievementDefinition(**values))
        else:
            for key, value in values.items():
                setattr(row, key, value)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
