"""
Plan table - the single source of per-plan, per-level generation limits.

Stored counters use UNLIMITED (-1) for levels without a cap and 0 for
locked levels; the plan table is what tells "locked" apart from
"exhausted".
"""

from datetime import UTC, datetime
from typing import Final

from trial_clients.models.api import Level, Plan
from trial_clients.models.domain import QuotaStatus

UNLIMITED: Final = -1
LOCKED: Final = "locked"

UNLIMITED_LABEL: Final = "unlimited"

# limit per level: an int cap, UNLIMITED, or LOCKED
PLAN_LIMITS: Final[dict[Plan, dict[Level, int | str]]] = {
    Plan.FREE: {
        Level.BEGINNER: UNLIMITED,
        Level.INTERMEDIATE: 2,
        Level.VETERAN: LOCKED,
    },
    Plan.PRO: {
        Level.BEGINNER: UNLIMITED,
        Level.INTERMEDIATE: UNLIMITED,
        Level.VETERAN: 4,
    },
    Plan.PROPLUS: {
        Level.BEGINNER: UNLIMITED,
        Level.INTERMEDIATE: UNLIMITED,
        Level.VETERAN: 20,
    },
}

COUNTER_COLUMNS: Final[dict[Level, str]] = {
    Level.BEGINNER: "beginner_left",
    Level.INTERMEDIATE: "intermediate_left",
    Level.VETERAN: "veteran_left",
}


def limit_for(plan: Plan, level: Level) -> int | str:
    """Limit for a level on a plan: a positive cap, UNLIMITED or LOCKED."""
    return PLAN_LIMITS[plan][level]


def is_locked(plan: Plan, level: Level) -> bool:
    return limit_for(plan, level) == LOCKED


def is_unlimited(plan: Plan, level: Level) -> bool:
    return limit_for(plan, level) == UNLIMITED


def default_counters(plan: Plan) -> dict[Level, int]:
    """Counter values written on plan change and at every period reset."""
    counters: dict[Level, int] = {}
    for level, limit in PLAN_LIMITS[plan].items():
        if limit == LOCKED:
            counters[level] = 0
        else:
            counters[level] = int(limit)
    return counters


def quota_status(plan: Plan | None, level: Level, remaining: int) -> QuotaStatus:
    """
    Pure quota status for one level.

    A missing plan (no subscription yet) reports the level as locked with
    zero remaining. For counted levels `available` is exactly
    `remaining > 0`.
    """
    if plan is None:
        return QuotaStatus(level=level, available=False, remaining=0, limit=0, is_locked=True)

    limit = limit_for(plan, level)
    if limit == LOCKED:
        return QuotaStatus(
            level=level, available=False, remaining=LOCKED, limit=LOCKED, is_locked=True
        )
    if limit == UNLIMITED:
        return QuotaStatus(
            level=level,
            available=True,
            remaining=UNLIMITED_LABEL,
            limit=UNLIMITED_LABEL,
            is_locked=False,
        )

    remaining = max(remaining, 0)
    return QuotaStatus(
        level=level,
        available=remaining > 0,
        remaining=remaining,
        limit=limit,
        is_locked=False,
    )


def next_reset_at(now: datetime | None = None) -> datetime:
    """First day of the next calendar month, 00:00 UTC."""
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    now = now.astimezone(UTC)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)
