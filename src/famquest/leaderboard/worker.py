"""Leaderboard and reconciliation arq worker.

Run with: ``arq famquest.leaderboard.worker.WorkerSettings``

- refresh_leaderboards: rebuild every family's cached leaderboards
- reconcile_counters: rebuild every child's counter projection and log drift
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from famquest.config import get_settings
from famquest.database import close_db, get_session_factory, init_db
from famquest.errors import GamificationError
from famquest.gamification.reconcile import reconcile_child
from famquest.leaderboard.leaderboard_service import PERIODS, get_family_leaderboard
from famquest.middleware.logging import setup_logging
from famquest.store.base import iter_family_children
from famquest.store.sql import SqlStore

logger = logging.getLogger(__name__)


async def refresh_leaderboards(ctx: dict) -> int:
    """Recompute and cache every period for every family with the leaderboard on."""
    store: SqlStore = ctx["store"]
    redis_client: aioredis.Redis = ctx["redis"]

    refreshed = 0
    for family_id in await store.list_family_ids():
        family = await store.get_family_settings(family_id)
        if not family.enable_leaderboard:
            continue
        for period in PERIODS:
            await get_family_leaderboard(store, family_id, period, redis=redis_client, refresh=True)
            refreshed += 1

    logger.info("Leaderboards refreshed: %d family periods", refreshed)
    return refreshed


async def reconcile_counters(ctx: dict) -> int:
    """Reconcile every active child. Returns how many had drifted."""
    store: SqlStore = ctx["store"]

    drifted = 0
    async for child in iter_family_children(store):
        try:
            report = await reconcile_child(store, child.child_id)
        except GamificationError:
            logger.exception("Reconciliation failed for child %s", child.child_id)
            continue
        if report["drift"]:
            drifted += 1

    logger.info("Counter reconciliation finished: %d children drifted", drifted)
    return drifted


async def worker_startup(ctx: dict) -> None:
    """Initialize DB + Redis connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["store"] = SqlStore(get_session_factory())
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    logger.info("Leaderboard worker started")


async def worker_shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    redis_client = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Leaderboard worker shut down")


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, min(minutes, 60))))


_settings = get_settings()


class WorkerSettings:
    """arq worker settings for leaderboard refresh and counter reconciliation."""

    functions = [refresh_leaderboards, reconcile_counters]
    cron_jobs = [
        cron(refresh_leaderboards, minute=_every(_settings.leaderboard_refresh_interval_minutes)),
        cron(reconcile_counters, minute=_every(_settings.reconcile_interval_minutes)),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = worker_startup
    on_shutdown = worker_shutdown
    max_jobs = 4
    job_timeout = 300
