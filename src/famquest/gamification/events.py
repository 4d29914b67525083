"""Best-effort pub/sub broadcasts for level-ups and achievement unlocks.

Events are published only after the approval transaction has committed.
A Redis failure is logged and never undoes the approval.
"""

from __future__ import annotations

import json
import logging

from famquest.gamification.entities import AchievementDefinition

logger = logging.getLogger(__name__)

LEVEL_UP_CHANNEL = "pubsub:level_up"
ACHIEVEMENT_CHANNEL = "pubsub:achievement_unlocked"


async def publish_level_up(
    redis: object,
    child_id: str,
    old_level: int,
    new_level: int,
    title: str,
) -> None:
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[attr-defined]
            LEVEL_UP_CHANNEL,
            json.dumps({
                "child_id": child_id,
                "old_level": old_level,
                "new_level": new_level,
                "title": title,
            }),
        )
    except Exception:
        logger.warning("Failed to publish level_up event", exc_info=True)


async def publish_achievement_unlocked(
    redis: object,
    child_id: str,
    achievement: AchievementDefinition,
) -> None:
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[attr-defined]
            ACHIEVEMENT_CHANNEL,
            json.dumps({
                "child_id": child_id,
                "achievement_id": achievement.id,
                "name": achievement.name,
                "tier": achievement.tier,
                "points_reward": achievement.points_reward,
                "xp_reward": achievement.xp_reward,
            }),
        )
    except Exception:
        logger.warning("Failed to publish achievement_unlocked event", exc_info=True)
