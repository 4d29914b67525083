"""Pydantic response models for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class LeaderboardEntryResponse(BaseModel):
    rank: int
    child_id: str
    display_name: str
    score: float
    period_points: int
    period_tasks: int
    current_streak: int
    achievement_count: int


class LeaderboardResponse(BaseModel):
    family_id: str
    period: str
    range_start: datetime
    range_end: datetime
    entries: list[LeaderboardEntryResponse]
