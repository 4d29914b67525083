"""ORM models for families, completions, the points ledger and achievements.

``points_ledger`` and ``unlocked_achievements`` are append-only.
``child_gamification`` is a projection that can be rebuilt from them and
from ``task_completions`` at any time.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from famquest.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


class Family(Base):
    """Maps to the 'families' table."""

    __tablename__ = "families"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    settings: Mapped[FamilySettings | None] = relationship("FamilySettings", uselist=False, lazy="selectin")
    children: Mapped[list[Child]] = relationship("Child", back_populates="family")


class FamilySettings(Base):
    """Per-family gamification knobs, one row per family."""

    __tablename__ = "family_settings"

    family_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("families.id", ondelete="CASCADE"), primary_key=True
    )
    streak_grace_period_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=4, server_default="4")
    minimum_tasks_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC", server_default="UTC")
    week_start_day: Mapped[str] = mapped_column(String(8), nullable=False, default="sunday", server_default="sunday")
    enable_leaderboard: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Child(Base):
    """Child accounts. Soft-deleted via ``deleted_at``."""

    __tablename__ = "children"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    family_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True
    )
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    family: Mapped[Family] = relationship("Family", back_populates="children")


# ---------------------------------------------------------------------------
# Task completions (owned by the task workflow, read by gamification)
# ---------------------------------------------------------------------------


class TaskCompletion(Base):
    """Approved task completions."""

    __tablename__ = "task_completions"
    __table_args__ = (
        UniqueConstraint("child_id", "task_id", "approved_at", name="task_completions_child_task_approved_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    child_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Gamification
# ---------------------------------------------------------------------------


class PointsLedger(Base):
    """Immutable points transaction log. ``balance_after`` is the running sum."""

    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    child_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    points_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    breakdown: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class ChildGamification(Base):
    """Denormalized counters: single row per child, rebuildable from the ledger."""

    __tablename__ = "child_gamification"

    child_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("children.id", ondelete="CASCADE"), primary_key=True
    )
    total_points_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    current_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_streak_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AchievementDefinition(Base):
    """Achievement catalog, seeded on startup."""

    __tablename__ = "achievement_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    criteria_type: Mapped[str] = mapped_column(String(32), nullable=False)
    criteria_value: Mapped[int] = mapped_column(Integer, nullable=False)
    criteria_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="bronze")
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class UnlockedAchievement(Base):
    """Achievements earned by children. UNIQUE(child_id, achievement_id) prevents duplicates."""

    __tablename__ = "unlocked_achievements"
    __table_args__ = (
        UniqueConstraint("child_id", "achievement_id", name="unlocked_achievements_child_achievement_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    child_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True
    )
    achievement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("achievement_definitions.id"), nullable=False
    )
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
