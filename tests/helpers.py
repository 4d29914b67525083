"""Store seeding helpers shared by the test suites."""

from __future__ import annotations

from datetime import datetime

from famquest.gamification.entities import CompletionRecord, TransactionType
from famquest.gamification.ledger import build_ledger_entry


async def give_points(store, child_id: str, amount: int, when: datetime) -> None:
    """Append an ``earned`` entry directly, bypassing the approval flow."""
    entry = build_ledger_entry(
        child_id, await store.get_balance(child_id), TransactionType.EARNED, {"base": amount}, when,
    )
    await store.append_ledger_entry(entry)


async def add_completions(store, child_id: str, *times: datetime, category: str | None = None) -> None:
    for i, approved_at in enumerate(times):
        await store.record_completion(CompletionRecord(
            child_id=child_id,
            task_id=f"task-{i}-{approved_at.isoformat()}",
            approved_at=approved_at,
            task_category=category,
        ))
