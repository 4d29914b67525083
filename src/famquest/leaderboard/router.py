"""Family leaderboard endpoint."""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, Query

from famquest.dependencies import get_store
from famquest.gamification.time_utils import utcnow
from famquest.leaderboard.leaderboard_service import get_family_leaderboard, get_period_range
from famquest.leaderboard.schemas import LeaderboardEntryResponse, LeaderboardResponse
from famquest.redis_client import get_optional_redis
from famquest.store.base import GamificationStore

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


@router.get("/families/{family_id}/leaderboard", response_model=LeaderboardResponse)
async def family_leaderboard(
    family_id: str,
    period: Literal["daily", "weekly", "monthly", "all_time"] = Query("weekly"),
    store: GamificationStore = Depends(get_store),
    redis=Depends(get_optional_redis),
):
    """Ranked children of a family for the requested period."""
    now = utcnow()
    entries = await get_family_leaderboard(store, family_id, period, now=now, redis=redis)
    family = await store.get_family_settings(family_id)
    start, end = get_period_range(period, now, family.timezone, family.week_start_day)

    return LeaderboardResponse(
        family_id=family_id,
        period=period,
        range_start=start,
        range_end=end,
        entries=[LeaderboardEntryResponse(**asdict(e)) for e in entries],
    )
