"""
Mise - Cooked Recipes Tool.

Looks up recipes the user has cooked before, optionally by name and
natural-language timeframe ("last week", "en enero").
"""

import logging
from typing import TYPE_CHECKING

from mise.db import get_client, run_query
from mise.models.recipes import RecipeCard
from mise.tools.timeframe import parse_timeframe
from mise.tools.validators import DIFFICULTIES, RetrieveCookedRecipesParams

if TYPE_CHECKING:
    from mise.context.builders import UserContext

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5

RETRIEVE_COOKED_RECIPES_SCHEMA = {
    "type": "function",
    "function": {
        "name": "retrieve_cooked_recipes",
        "description": (
            "Retrieve recipes the user has previously cooked. "
            "If query is provided, match by recipe name (fuzzy + substring). "
            "If query is omitted, return the most recently cooked recipes. "
            "Use for requests like 'show me what I cooked last time' or 'that dressing we made last week'."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Optional recipe name hint, e.g. 'chipotle dressing'",
                },
                "timeframe": {
                    "type": "string",
                    "description": "Optional time reference, e.g. 'last week', 'yesterday', 'January'",
                },
            },
            "required": [],
        },
    },
}


def _difficulty(value: str | None) -> str:
    return value if value in DIFFICULTIES else "easy"


async def retrieve_cooked_recipes(
    params: RetrieveCookedRecipesParams,
    user_context: "UserContext",
) -> list[RecipeCard]:
    """Recently cooked recipes matching the params. RPC failure returns []."""
    time_range = parse_timeframe(params.timeframe) if params.timeframe else None

    try:
        response = await run_query(
            get_client().rpc(
                "get_cooked_recipes",
                {
                    "p_language": user_context.language,
                    "p_query": params.query,
                    "p_after": time_range.after.isoformat() if time_range else None,
                    "p_before": time_range.before.isoformat() if time_range else None,
                    "p_limit": DEFAULT_LIMIT,
                },
            )
        )
    except Exception as e:
        logger.warning(f"get_cooked_recipes failed for user {user_context.user_id}: {e}")
        return []

    rows = response.data if response is not None else None
    if not isinstance(rows, list):
        return []

    return [
        RecipeCard(
            recipe_id=row["recipe_id"],
            name=(row.get("name") or "").strip() or "Untitled",
            image_url=row.get("image_url"),
            total_time=max(0, int(row.get("total_time") or 0)),
            difficulty=_difficulty(row.get("difficulty")),
            portions=max(1, int(row.get("portions") or 1)),
        )
        for row in rows
        if row.get("recipe_id")
    ]
