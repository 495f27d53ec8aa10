"""
Mise - AI Usage Logging.

Token and cost accounting for every customer-facing model call.

Rows are keyed by (request_id, call_phase, attempt); writes are upserts that
ignore duplicates, so a retried write never double-counts. log_usage() is
best-effort and never raises: accounting must not block a user response.
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field
from supabase import Client

from mise.db import get_service_client, run_query

logger = logging.getLogger(__name__)

# Bump when MODEL_PRICING changes so stored estimates stay comparable
PRICING_VERSION = 1

# Per 1M tokens (USD)
MODEL_PRICING: dict[str, dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "o1-mini": {"input": 3.00, "output": 12.00},
    "o1": {"input": 15.00, "output": 60.00},
}

ALLOWED_METADATA_KEYS = frozenset(
    {
        "streaming",
        "tool_names",
        "request_type",
        "forced_tool_use",
        "source",
        "has_tool_calls",
        "timeout",
    }
)

UsageStatus = Literal["success", "partial", "error"]
CallPhase = Literal["tool_decision", "response_stream", "recipe_generation", "modification"]


class UsageLogParams(BaseModel):
    """One model call to account for."""

    user_id: str
    session_id: str | None = None
    request_id: str
    call_phase: CallPhase
    attempt: int = 0
    status: UsageStatus = "success"
    function_name: str
    usage_type: str
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Pricing
# =============================================================================


def resolve_pricing(model: str) -> dict[str, float] | None:
    """
    Find the price entry for a model by longest matching base name.

    "gpt-4o-mini-2024-07-18" resolves to "gpt-4o-mini", not "gpt-4o".
    A dated or variant suffix must follow a "-".
    """
    normalized = model.strip().lower()

    for base in sorted(MODEL_PRICING, key=len, reverse=True):
        if normalized == base or normalized.startswith(f"{base}-"):
            return MODEL_PRICING[base]

    return None


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float | None:
    """
    Estimate the cost of an LLM call in USD.

    Returns None for models missing from the price table.
    """
    pricing = resolve_pricing(model)
    if pricing is None:
        return None

    input_cost = (input_tokens / 1_000_000) * pricing["input"]
    output_cost = (output_tokens / 1_000_000) * pricing["output"]
    return input_cost + output_cost


def sanitize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Keep only allow-listed metadata keys; tool_names is capped at 20 strings."""
    if not metadata:
        return {}

    safe: dict[str, Any] = {}
    for key, value in metadata.items():
        if key not in ALLOWED_METADATA_KEYS:
            continue
        if key == "tool_names" and isinstance(value, list):
            safe[key] = [v for v in value if isinstance(v, str)][:20]
            continue
        safe[key] = value

    return safe


def build_usage_row(params: UsageLogParams) -> dict[str, Any]:
    """Row for ai_usage_logs."""
    has_tokens = params.input_tokens is not None and params.output_tokens is not None

    estimated_cost = (
        estimate_cost(params.model, params.input_tokens, params.output_tokens)
        if params.model and has_tokens
        else None
    )

    return {
        "user_id": params.user_id,
        "session_id": params.session_id,
        "request_id": params.request_id,
        "call_phase": params.call_phase,
        "attempt": params.attempt,
        "status": params.status,
        "function_name": params.function_name,
        "usage_type": params.usage_type,
        "model": params.model,
        "input_tokens": params.input_tokens,
        "output_tokens": params.output_tokens,
        "estimated_cost_usd": estimated_cost,
        "pricing_version": PRICING_VERSION,
        "duration_ms": params.duration_ms,
        "metadata": sanitize_metadata(params.metadata),
    }


# =============================================================================
# Writers
# =============================================================================


async def log_usage_with_client(client: Client, params: UsageLogParams) -> None:
    """Upsert one usage row. Raises on failure."""
    await run_query(
        client.table("ai_usage_logs").upsert(
            build_usage_row(params),
            on_conflict="request_id,call_phase,attempt",
            ignore_duplicates=True,
        )
    )


async def log_usage(params: UsageLogParams) -> None:
    """Best-effort usage write. Never raises."""
    try:
        await log_usage_with_client(get_service_client(), params)
    except Exception as e:
        logger.error(
            f"Failed to persist AI usage for request {params.request_id} "
            f"({params.call_phase}, attempt {params.attempt}): {e}"
        )
