"""Pydantic request/response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


# --- Approvals ---


class ApprovalRequest(BaseModel):
    task_id: str = Field(min_length=1, max_length=64)
    points_value: int = Field(ge=0)
    difficulty: str = "medium"
    category: str | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None


class AchievementSummary(BaseModel):
    id: str
    name: str
    tier: str
    points_reward: int
    xp_reward: int


class StreakResponse(BaseModel):
    current_streak: int
    streak_at_risk: bool
    completed_today: int
    required_daily: int
    streak_day: date


class ApprovalResponse(BaseModel):
    child_id: str
    points_awarded: int
    xp_awarded: int
    new_balance: int
    leveled_up: bool
    new_level: int | None = None
    unlocked_achievements: list[AchievementSummary]
    streak: StreakResponse
    breakdown: dict[str, int]
    duplicate: bool = False


# --- XP ---


class XPResponse(BaseModel):
    total_xp: int
    level: int
    title: str
    current_xp: int
    xp_to_next: int
    progress_percent: int


class LevelEntry(BaseModel):
    level: int
    title: str
    xp_required: int
    cumulative_xp: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


# --- Ledger ---


class LedgerEntryResponse(BaseModel):
    transaction_type: str
    points_amount: int
    balance_after: int
    breakdown: dict[str, int] = {}
    reference_type: str | None = None
    reference_id: str | None = None
    description: str | None = None
    created_at: datetime


class LedgerResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    balance: int
    total: int
    page: int
    per_page: int


class TransactionRequest(BaseModel):
    transaction_type: Literal["redeemed", "penalty", "adjustment"]
    amount: int
    reference_id: str | None = None
    description: str | None = Field(default=None, max_length=256)


# --- Achievements ---


class AchievementResponse(BaseModel):
    id: str
    name: str
    description: str
    criteria_type: str
    criteria_value: int
    tier: str
    points_reward: int
    xp_reward: int
    progress: int
    unlocked: bool
    unlocked_at: datetime | None = None


class AchievementsResponse(BaseModel):
    achievements: list[AchievementResponse]
    total_available: int
    total_unlocked: int


# --- Reconcile ---


class ReconcileResponse(BaseModel):
    child_id: str
    drift: dict[str, list]
    total_points_earned: int
    total_tasks_completed: int
    total_xp: int
    current_streak_days: int
    longest_streak_days: int
