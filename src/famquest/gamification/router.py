"""Gamification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from famquest.dependencies import get_store
from famquest.gamification.achievement_engine import AchievementEngine
from famquest.gamification.approval_service import on_task_approved
from famquest.gamification.entities import ApprovedTask, TransactionType
from famquest.gamification.levels import (
    MAX_LEVEL,
    cumulative_xp_for_level,
    level_from_xp,
    level_title,
    xp_required_for_level,
)
from famquest.gamification.points_service import record_transaction
from famquest.gamification.reconcile import reconcile_child
from famquest.gamification.schemas import (
    AchievementResponse,
    AchievementsResponse,
    AchievementSummary,
    AllLevelsResponse,
    ApprovalRequest,
    ApprovalResponse,
    LedgerEntryResponse,
    LedgerResponse,
    LevelEntry,
    ReconcileResponse,
    StreakResponse,
    TransactionRequest,
    XPResponse,
)
from famquest.gamification.streak_service import get_streak_status
from famquest.redis_client import get_optional_redis
from famquest.store.base import GamificationStore

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels(limit: int = Query(20, ge=1, le=MAX_LEVEL)):
    """The XP curve for the first ``limit`` levels."""
    return AllLevelsResponse(levels=[
        LevelEntry(
            level=level,
            title=level_title(level),
            xp_required=xp_required_for_level(level),
            cumulative_xp=cumulative_xp_for_level(level),
        )
        for level in range(1, limit + 1)
    ])


@router.post("/children/{child_id}/approvals", response_model=ApprovalResponse)
async def approve_task(
    child_id: str,
    body: ApprovalRequest,
    store: GamificationStore = Depends(get_store),
    redis=Depends(get_optional_redis),
):
    """Process one approved task completion."""
    task = ApprovedTask(
        task_id=body.task_id,
        points_value=body.points_value,
        difficulty=body.difficulty,
        category=body.category,
        due_date=body.due_date,
    )
    result = await on_task_approved(store, child_id, task, body.completed_at, redis=redis)

    return ApprovalResponse(
        child_id=result.child_id,
        points_awarded=result.points_awarded,
        xp_awarded=result.xp_awarded,
        new_balance=result.new_balance,
        leveled_up=result.leveled_up,
        new_level=result.new_level,
        unlocked_achievements=[
            AchievementSummary(
                id=a.id, name=a.name, tier=a.tier, points_reward=a.points_reward, xp_reward=a.xp_reward,
            )
            for a in result.unlocked_achievements
        ],
        streak=StreakResponse(
            current_streak=result.streak.current_streak,
            streak_at_risk=result.streak.streak_at_risk,
            completed_today=result.streak.completed_today,
            required_daily=result.streak.required_daily,
            streak_day=result.streak.streak_day,
        ),
        breakdown=result.breakdown,
        duplicate=result.duplicate,
    )


@router.get("/children/{child_id}/streak", response_model=StreakResponse)
async def get_streak(child_id: str, store: GamificationStore = Depends(get_store)):
    """Live streak status."""
    return StreakResponse(**await get_streak_status(store, child_id))


@router.get("/children/{child_id}/xp", response_model=XPResponse)
async def get_xp(child_id: str, store: GamificationStore = Depends(get_store)):
    """Level and progress from the child's total XP."""
    counters = await store.get_child_counter_state(child_id)
    return XPResponse(**level_from_xp(counters.total_xp))


@router.get("/children/{child_id}/ledger", response_model=LedgerResponse)
async def get_ledger(
    child_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    store: GamificationStore = Depends(get_store),
):
    """Paginated points history, newest first."""
    await store.get_child_profile(child_id)
    entries = await store.get_ledger(
        child_id, offset=(page - 1) * per_page, limit=per_page, newest_first=True,
    )
    return LedgerResponse(
        entries=[
            LedgerEntryResponse(
                transaction_type=e.transaction_type.value,
                points_amount=e.points_amount,
                balance_after=e.balance_after,
                breakdown=e.breakdown,
                reference_type=e.reference_type,
                reference_id=e.reference_id,
                description=e.description,
                created_at=e.created_at,
            )
            for e in entries
        ],
        balance=await store.get_balance(child_id),
        total=await store.count_ledger_entries(child_id),
        page=page,
        per_page=per_page,
    )


@router.post("/children/{child_id}/transactions", response_model=LedgerEntryResponse, status_code=201)
async def create_transaction(
    child_id: str,
    body: TransactionRequest,
    store: GamificationStore = Depends(get_store),
):
    """Record a reward redemption, penalty or manual adjustment."""
    await store.get_child_profile(child_id)
    entry, _ = await record_transaction(
        store,
        child_id,
        TransactionType(body.transaction_type),
        body.amount,
        reference_id=body.reference_id,
        description=body.description,
    )
    return LedgerEntryResponse(
        transaction_type=entry.transaction_type.value,
        points_amount=entry.points_amount,
        balance_after=entry.balance_after,
        breakdown=entry.breakdown,
        reference_type=entry.reference_type,
        reference_id=entry.reference_id,
        description=entry.description,
        created_at=entry.created_at,
    )


@router.get("/children/{child_id}/achievements", response_model=AchievementsResponse)
async def list_achievements(child_id: str, store: GamificationStore = Depends(get_store)):
    """Achievement catalog with the child's unlock status and progress."""
    counters = await store.get_child_counter_state(child_id)
    unlocked = {u.achievement_id: u for u in await store.get_unlocked_achievements(child_id)}
    engine = AchievementEngine(store)

    items = []
    for definition in await store.get_achievement_catalog():
        earned = unlocked.get(definition.id)
        items.append(AchievementResponse(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            criteria_type=definition.criteria_type.value,
            criteria_value=definition.criteria_value,
            tier=definition.tier,
            points_reward=definition.points_reward,
            xp_reward=definition.xp_reward,
            progress=min(await engine.current_value(definition, counters), definition.criteria_value),
            unlocked=earned is not None,
            unlocked_at=earned.unlocked_at if earned else None,
        ))

    return AchievementsResponse(
        achievements=items,
        total_available=len(items),
        total_unlocked=sum(1 for i in items if i.unlocked),
    )


@router.post("/children/{child_id}/reconcile", response_model=ReconcileResponse)
async def reconcile(child_id: str, store: GamificationStore = Depends(get_store)):
    """Rebuild the child's counters from the ledger and report any drift."""
    report = await reconcile_child(store, child_id)
    counters = report["counters"]
    return ReconcileResponse(
        child_id=child_id,
        drift={
            name: [_jsonable(cached), _jsonable(rebuilt)]
            for name, (cached, rebuilt) in report["drift"].items()
        },
        total_points_earned=counters.total_points_earned,
        total_tasks_completed=counters.total_tasks_completed,
        total_xp=counters.total_xp,
        current_streak_days=counters.current_streak_days,
        longest_streak_days=counters.longest_streak_days,
    )


def _jsonable(value: object) -> object:
    return value.isoformat() if hasattr(value, "isoformat") else value
