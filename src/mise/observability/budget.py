"""
Mise - Monthly Generation Budget.

Caps how many custom recipes one user can generate per calendar month (UTC).

- check_generation_budget: read-only, before a generation is attempted
- record_generation_usage: atomic check-and-increment after a successful
  generation (check_and_increment_ai_generation_usage RPC), with a one-time
  heads-up when usage first crosses 80% and 90% of the limit

Counter failures fail open: a broken budget table never blocks cooking.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from mise.config import settings
from mise.db import get_service_client, run_query

logger = logging.getLogger(__name__)

USAGE_TABLE = "ai_monthly_generation_usage"
INCREMENT_RPC = "check_and_increment_ai_generation_usage"

# Highest first, so a jump past both thresholds reports 90
WARNING_LEVELS = (90, 80)

MONTH_NAMES = {
    "en": [
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ],
    "es": [
        "enero", "febrero", "marzo", "abril", "mayo", "junio",
        "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
    ],
}


@dataclass
class GenerationBudgetStatus:
    """Where a user stands against this month's generation limit."""

    allowed: bool
    used: int
    limit: int
    reset_at: date
    warning_level: int | None = None
    warning_message: str | None = None


# =============================================================================
# Dates and Messages
# =============================================================================


def month_start(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    return date(now.year, now.month, 1)


def next_month_start(start: date) -> date:
    if start.month == 12:
        return date(start.year + 1, 1, 1)
    return date(start.year, start.month + 1, 1)


def format_reset_date(reset_at: date, language: str = "en") -> str:
    """March 1, 2026 / 1 de marzo de 2026"""
    if language == "es":
        return f"{reset_at.day} de {MONTH_NAMES['es'][reset_at.month - 1]} de {reset_at.year}"
    return f"{MONTH_NAMES['en'][reset_at.month - 1]} {reset_at.day}, {reset_at.year}"


def build_warning_message(language: str, used: int, limit: int, reset_at: date, level: int) -> str:
    reset = format_reset_date(reset_at, language)
    if language == "es":
        return (
            f"Aviso: has usado {used} de {limit} creaciones de recetas este mes ({level}%). "
            f"Se reinicia el {reset}."
        )
    return (
        f"Heads up: you've used {used} of {limit} recipe creations this month ({level}%). "
        f"It resets on {reset}."
    )


def build_budget_exceeded_message(language: str, reset_at: date) -> str:
    reset = format_reset_date(reset_at, language)
    if language == "es":
        return (
            f"Alcanzaste tu límite mensual de creaciones de recetas. Se reinicia el {reset}. "
            "Mientras tanto, puedo ayudarte a buscar recetas existentes."
        )
    return (
        f"You've reached your monthly recipe creation limit. It resets on {reset}. "
        "In the meantime, I can still help you search existing recipes."
    )


# =============================================================================
# Budget
# =============================================================================


async def check_generation_budget(
    user_id: str,
    limit: int | None = None,
    now: datetime | None = None,
) -> GenerationBudgetStatus:
    """Current usage for this month. A failed read counts as zero used."""
    limit = limit or settings.ai_monthly_generation_limit
    start = month_start(now)
    reset_at = next_month_start(start)

    try:
        response = await run_query(
            get_service_client()
            .table(USAGE_TABLE)
            .select("generation_count, warning_80_sent_at, warning_90_sent_at")
            .eq("user_id", user_id)
            .eq("month_start", start.isoformat())
            .maybe_single()
        )
    except Exception as e:
        logger.warning(f"Failed reading generation usage for user {user_id}: {e}")
        response = None

    row = (response.data if response is not None else None) or {}
    used = int(row.get("generation_count") or 0)

    return GenerationBudgetStatus(allowed=used < limit, used=used, limit=limit, reset_at=reset_at)


async def _mark_warning_sent(user_id: str, start: date, level: int, now: datetime) -> None:
    try:
        await run_query(
            get_service_client()
            .table(USAGE_TABLE)
            .update({f"warning_{level}_sent_at": now.isoformat()})
            .eq("user_id", user_id)
            .eq("month_start", start.isoformat())
        )
    except Exception as e:
        logger.warning(f"Failed to mark {level}% generation warning for user {user_id}: {e}")


async def record_generation_usage(
    user_id: str,
    language: str = "en",
    limit: int | None = None,
    now: datetime | None = None,
) -> GenerationBudgetStatus:
    """
    Count one generation against the monthly budget.

    Returns:
        The updated status. warning_message is set when the limit was
        already reached, or when a warning threshold is crossed for the
        first time this month.
    """
    limit = limit or settings.ai_monthly_generation_limit
    now = now or datetime.now(timezone.utc)
    start = month_start(now)
    reset_at = next_month_start(start)

    try:
        response = await run_query(
            get_service_client().rpc(INCREMENT_RPC, {"p_user_id": user_id, "p_limit": limit})
        )
    except Exception as e:
        logger.warning(f"Generation budget increment failed for user {user_id}: {e}")
        return GenerationBudgetStatus(allowed=True, used=0, limit=limit, reset_at=reset_at)

    data: Any = response.data if response is not None else None
    row = data[0] if isinstance(data, list) and data else data
    if not isinstance(row, dict):
        logger.warning(f"Generation budget increment returned no row for user {user_id}")
        return GenerationBudgetStatus(allowed=True, used=0, limit=limit, reset_at=reset_at)

    used = int(row.get("used") or 0)
    if not row.get("allowed"):
        return GenerationBudgetStatus(
            allowed=False,
            used=used,
            limit=limit,
            reset_at=reset_at,
            warning_message=build_budget_exceeded_message(language, reset_at),
        )

    for level in WARNING_LEVELS:
        if used >= math.ceil(limit * level / 100) and not row.get(f"was_{level}_warning_sent"):
            await _mark_warning_sent(user_id, start, level, now)
            return GenerationBudgetStatus(
                allowed=True,
                used=used,
                limit=limit,
                reset_at=reset_at,
                warning_level=level,
                warning_message=build_warning_message(language, used, limit, reset_at, level),
            )

    return GenerationBudgetStatus(allowed=True, used=used, limit=limit, reset_at=reset_at)
