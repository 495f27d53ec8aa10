"""
Mise Context API - User Context Builder.

Assembles one UserContext per request from:
- user_profiles: language, restrictions, diet types, allergies, equipment
- user_context: skill, household, dislikes, restrictions, units
- user_chat_messages: the last few turns of the current session

Missing rows and read failures fall back to defaults; building context
never raises.

Usage:
    ctx = await build_context(user_id, session_id)
    resumable = await get_resumable_cooking_session(user_id)
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from mise.config import settings
from mise.db import get_client, run_query
from mise.tools.normalize import normalize_name

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000
MAX_LIST_ITEMS = 20
ELLIPSIS = "..."

# Control characters except \t and \n
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


# =============================================================================
# Context Containers
# =============================================================================


@dataclass
class HistoryMessage:
    """One prior turn, sanitized for prompt injection."""

    role: Literal["user", "assistant"]
    content: str
    custom_recipe: dict[str, Any] | None = None


@dataclass
class UserContext:
    """Everything the model and tools need to know about the user this turn."""

    user_id: str
    language: Literal["en", "es"] = "en"
    measurement_system: Literal["imperial", "metric"] = "imperial"
    dietary_restrictions: list[str] = field(default_factory=list)
    ingredient_dislikes: list[str] = field(default_factory=list)
    diet_types: list[str] = field(default_factory=list)
    custom_allergies: list[str] = field(default_factory=list)
    kitchen_equipment: list[str] = field(default_factory=list)
    cuisine_preferences: list[str] = field(default_factory=list)
    skill_level: str | None = None
    household_size: int | None = None
    conversation_history: list[HistoryMessage] = field(default_factory=list)

    @property
    def all_restrictions(self) -> list[str]:
        """Dietary restrictions plus custom allergies, deduplicated."""
        return _union(self.dietary_restrictions, self.custom_allergies)


@dataclass
class ResumableSession:
    """An unfinished cooking session the user can pick back up."""

    session_id: str
    recipe_id: str | None
    recipe_name: str
    recipe_kind: Literal["recipe", "custom"]
    current_step: int
    total_steps: int
    last_active_at: datetime


# =============================================================================
# Sanitizers
# =============================================================================


def sanitize_content(content: str | None) -> str:
    """
    Strip control characters (keeping newlines and tabs) and cap length.

    Content over the cap is cut and marked with "..." so the total stays
    within MAX_CONTENT_LENGTH.
    """
    if not content:
        return ""
    cleaned = _CONTROL_CHARS.sub("", content)
    if len(cleaned) > MAX_CONTENT_LENGTH:
        return cleaned[: MAX_CONTENT_LENGTH - len(ELLIPSIS)] + ELLIPSIS
    return cleaned


def sanitize_list(values: Any) -> list[str]:
    """Sanitize a list of user-provided strings, dropping blanks and non-strings."""
    if not isinstance(values, list):
        return []

    sanitized: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        cleaned = sanitize_content(value).strip()
        if cleaned:
            sanitized.append(cleaned)
        if len(sanitized) >= MAX_LIST_ITEMS:
            break

    return sanitized


def _normalize_allergies(value: Any) -> list[str]:
    """other_allergy may be stored as a string or a list."""
    if isinstance(value, list):
        return sanitize_list(value)
    if isinstance(value, str):
        cleaned = sanitize_content(value).strip()
        return [cleaned] if cleaned else []
    return []


def _union(*sources: list[str]) -> list[str]:
    """Order-preserving union on canonical (normalized) strings."""
    merged: dict[str, None] = {}
    for source in sources:
        for item in source:
            canonical = normalize_name(item)
            if canonical:
                merged.setdefault(canonical, None)
    return list(merged)


def _utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _parse_iso(iso_str: str | None) -> datetime | None:
    """Parse ISO format string to an aware datetime."""
    if not iso_str:
        return None
    try:
        if iso_str.endswith("Z"):
            iso_str = iso_str[:-1] + "+00:00"
        parsed = datetime.fromisoformat(iso_str)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# =============================================================================
# History Summaries
# =============================================================================


def _summarize_recipes(data: Any) -> str | None:
    if not isinstance(data, list) or not data:
        return None

    summaries = []
    for recipe in data:
        if not isinstance(recipe, dict):
            continue
        attrs = []
        if recipe.get("name"):
            attrs.append(str(recipe["name"]))
        if recipe.get("total_time"):
            attrs.append(f"{recipe['total_time']} min")
        if recipe.get("difficulty"):
            attrs.append(str(recipe["difficulty"]))
        if recipe.get("portions"):
            attrs.append(f"{recipe['portions']} portions")
        if recipe.get("allergen_warnings"):
            attrs.append(f"allergens: {', '.join(recipe['allergen_warnings'])}")
        summaries.append(", ".join(attrs))

    if not summaries:
        return None
    return f"[Showed {len(summaries)} recipe(s): {' | '.join(summaries)}]"


def _summarize_custom_recipe(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None

    attrs = []
    if data.get("suggested_name"):
        attrs.append(f'"{data["suggested_name"]}"')
    names = [i.get("name") for i in data.get("ingredients") or [] if isinstance(i, dict) and i.get("name")]
    if names:
        attrs.append(f"ingredients: {', '.join(names)}")
    if data.get("total_time"):
        attrs.append(f"{data['total_time']} min")
    if data.get("portions"):
        attrs.append(f"{data['portions']} portions")
    if data.get("difficulty"):
        attrs.append(str(data["difficulty"]))

    return f"[Generated recipe: {', '.join(attrs)}]"


# Keyed by the shaped tool-result field stored in user_chat_messages.tool_calls
HISTORY_SUMMARIZERS = {
    "recipes": _summarize_recipes,
    "custom_recipe": _summarize_custom_recipe,
}


def _stored_custom_recipe(tool_calls: Any) -> dict[str, Any] | None:
    """The generated recipe stored with an assistant turn, unless it was a refusal."""
    if not isinstance(tool_calls, dict) or not isinstance(tool_calls.get("custom_recipe"), dict):
        return None
    flags = tool_calls.get("safety_flags")
    if isinstance(flags, dict) and flags.get("error"):
        return None
    return tool_calls["custom_recipe"]


def summarize_history_tool_results(tool_calls: Any) -> str:
    """One-line summaries of the tool results stored with an assistant turn."""
    if not isinstance(tool_calls, dict):
        return ""

    parts = []
    for key, summarize in HISTORY_SUMMARIZERS.items():
        if key in tool_calls:
            summary = summarize(tool_calls[key])
            if summary:
                parts.append(summary)

    return " ".join(parts)


# =============================================================================
# Loaders
# =============================================================================


async def _load_row(table: str, key: str, user_id: str, columns: str) -> dict:
    try:
        response = await run_query(
            get_client().table(table).select(columns).eq(key, user_id).maybe_single()
        )
    except Exception as e:
        logger.warning(f"Failed to load {table} for user {user_id}: {e}")
        return {}
    return (response.data if response is not None else None) or {}


async def load_conversation_history(session_id: str | None) -> list[HistoryMessage]:
    """Newest messages of a session, returned oldest first."""
    if not session_id:
        return []

    try:
        response = await run_query(
            get_client()
            .table("user_chat_messages")
            .select("role, content, tool_calls")
            .eq("session_id", session_id)
            .order("created_at", desc=True)
            .limit(settings.history_limit)
        )
    except Exception as e:
        logger.warning(f"Failed to load conversation history for session {session_id}: {e}")
        return []

    history = []
    for row in reversed(response.data or []):
        role = row.get("role")
        if role not in ("user", "assistant"):
            continue
        content = row.get("content") or ""
        if role == "assistant" and row.get("tool_calls"):
            summary = summarize_history_tool_results(row["tool_calls"])
            if summary:
                content = f"{content}\n{summary}" if content else summary
        history.append(
            HistoryMessage(
                role=role,
                content=sanitize_content(content),
                custom_recipe=_stored_custom_recipe(row.get("tool_calls")) if role == "assistant" else None,
            )
        )

    return history


async def build_context(user_id: str, session_id: str | None = None) -> UserContext:
    """
    Build the user context for one request.

    Profile, preferences and history are read concurrently.
    """
    profile, preferences, history = await asyncio.gather(
        _load_row(
            "user_profiles",
            "id",
            user_id,
            "language, dietary_restrictions, diet_types, other_allergy, kitchen_equipment, cuisine_preferences",
        ),
        _load_row(
            "user_context",
            "user_id",
            user_id,
            "skill_level, household_size, ingredient_dislikes, dietary_restrictions, measurement_system",
        ),
        load_conversation_history(session_id),
    )

    language = "es" if profile.get("language") == "es" else "en"

    measurement_system = preferences.get("measurement_system")
    if measurement_system not in ("imperial", "metric"):
        measurement_system = "metric" if language == "es" else "imperial"

    household_size = preferences.get("household_size")
    if not isinstance(household_size, int) or household_size < 1:
        household_size = None

    context = UserContext(
        user_id=user_id,
        language=language,
        measurement_system=measurement_system,
        dietary_restrictions=_union(
            sanitize_list(profile.get("dietary_restrictions")),
            sanitize_list(preferences.get("dietary_restrictions")),
        ),
        ingredient_dislikes=sanitize_list(preferences.get("ingredient_dislikes")),
        diet_types=sanitize_list(profile.get("diet_types")),
        custom_allergies=_normalize_allergies(profile.get("other_allergy")),
        kitchen_equipment=sanitize_list(profile.get("kitchen_equipment")),
        cuisine_preferences=sanitize_list(profile.get("cuisine_preferences")),
        skill_level=preferences.get("skill_level") or None,
        household_size=household_size,
        conversation_history=history,
    )

    logger.debug(
        f"Built context for user {user_id}: language={context.language}, "
        f"restrictions={context.dietary_restrictions}, history={len(history)}"
    )
    return context


async def get_resumable_cooking_session(user_id: str) -> ResumableSession | None:
    """
    The most recently active unfinished cooking session, if still fresh.

    Sessions idle longer than session_expire_hours are not resumable.
    Read-only: stale sessions are left as they are.
    """
    try:
        response = await run_query(
            get_client()
            .table("cooking_sessions")
            .select("id, recipe_id, recipe_name, recipe_type, current_step, total_steps, last_active_at")
            .eq("user_id", user_id)
            .eq("completed", False)
            .eq("abandoned", False)
            .order("last_active_at", desc=True)
            .limit(1)
        )
    except Exception as e:
        logger.warning(f"Failed to check cooking sessions for user {user_id}: {e}")
        return None

    rows = response.data or []
    if not rows:
        return None

    row = rows[0]
    last_active = _parse_iso(row.get("last_active_at"))
    if last_active is None:
        return None

    if _utc_now() - last_active > timedelta(hours=settings.session_expire_hours):
        return None

    return ResumableSession(
        session_id=row["id"],
        recipe_id=row.get("recipe_id"),
        recipe_name=row.get("recipe_name") or "",
        recipe_kind="custom" if row.get("recipe_type") == "custom" else "recipe",
        current_step=int(row.get("current_step") or 1),
        total_steps=int(row.get("total_steps") or 0),
        last_active_at=last_active,
    )
