"""
Mise - Tool Argument Validation.

Model output is untrusted. Every tool argument is parsed, sanitized and
bounded here before a tool runs; anything unusable raises ToolValidationError,
which callers map to a client-error outcome (never retried).
"""

import json
import math
import re
from typing import Any, Literal

from pydantic import BaseModel

DIFFICULTIES = ("easy", "medium", "hard")

# Anything except letters, digits, whitespace and hyphens (any script)
_UNSAFE_CHARS = re.compile(r"[^\w\s-]|_")


class ToolValidationError(ValueError):
    """Tool arguments were malformed, out of contract, or named an unknown tool."""

    status_code = 400


# =============================================================================
# Helpers
# =============================================================================


def sanitize_string(value: Any, max_length: int) -> str:
    """Require a string, trim it, and cap its length."""
    if value is None:
        raise ToolValidationError("Expected string, got null")
    if not isinstance(value, str):
        raise ToolValidationError(f"Expected string, got {type(value).__name__}")
    return value.strip()[:max_length]


def sanitize_ingredient_name(value: str) -> str:
    """Strip punctuation and collapse spaces, keeping letters in any script."""
    return " ".join(_UNSAFE_CHARS.sub("", value.strip()).split())


def sanitize_search_query(value: Any, max_length: int) -> str:
    """
    Sanitize text used inside PostgREST filter expressions.

    Keeps letters, digits, spaces and hyphens so wildcards and filter
    operators cannot be smuggled into the query.
    """
    return " ".join(_UNSAFE_CHARS.sub(" ", sanitize_string(value, max_length)).split())


def clamp_number(value: Any, min_value: int, max_value: int) -> int:
    """Coerce to a number, clamp to [min_value, max_value], round down."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ToolValidationError(f"Expected number, got {type(value).__name__}")
    if math.isnan(number):
        raise ToolValidationError("Expected number, got NaN")
    return math.floor(max(min_value, min(max_value, number)))


def validate_enum(value: Any, allowed: tuple[str, ...]) -> str:
    if not isinstance(value, str):
        raise ToolValidationError(f"Expected string enum value, got {type(value).__name__}")
    if value not in allowed:
        raise ToolValidationError(f'Invalid value "{value}". Allowed: {", ".join(allowed)}')
    return value


def parse_arguments(raw: Any, tool_name: str) -> dict[str, Any]:
    """Accept a JSON string or a dict; anything else is a validation error."""
    params = raw
    if isinstance(raw, str):
        try:
            params = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError:
            raise ToolValidationError(f"Invalid JSON in {tool_name} params")

    if not isinstance(params, dict):
        raise ToolValidationError(f"{tool_name} params must be an object")

    return params


def _string_list(values: Any, max_items: int, max_length: int) -> list[str]:
    if not isinstance(values, list):
        return []
    cleaned = [
        sanitize_string(item, max_length)
        for item in values
        if isinstance(item, str) and item.strip()
    ]
    return cleaned[:max_items]


# =============================================================================
# Tool Parameters
# =============================================================================


class SearchRecipesParams(BaseModel):
    query: str | None = None
    cuisine: str | None = None
    max_time: int | None = None
    difficulty: Literal["easy", "medium", "hard"] | None = None
    limit: int = 10


class GenerateRecipeParams(BaseModel):
    ingredients: list[str]
    recipe_description: str | None = None
    cuisine_preference: str | None = None
    target_time: int | None = None
    difficulty: Literal["easy", "medium", "hard"] | None = None
    additional_requests: str | None = None
    useful_items: list[str] | None = None


class RetrieveCookedRecipesParams(BaseModel):
    query: str | None = None
    timeframe: str | None = None


class ModifyRecipeParams(BaseModel):
    modification_request: str


def validate_search_recipes_params(raw: Any) -> SearchRecipesParams:
    p = parse_arguments(raw, "search_recipes")

    query = sanitize_search_query(p["query"], 200) if p.get("query") is not None else ""
    has_filters = any(p.get(key) is not None for key in ("cuisine", "max_time", "difficulty"))

    if not query and not has_filters:
        raise ToolValidationError("search_recipes requires a query or at least one filter")

    return SearchRecipesParams(
        query=query or None,
        cuisine=sanitize_string(p["cuisine"], 50) if p.get("cuisine") else None,
        max_time=clamp_number(p["max_time"], 1, 480) if p.get("max_time") is not None else None,
        difficulty=validate_enum(p["difficulty"], DIFFICULTIES) if p.get("difficulty") is not None else None,
        limit=clamp_number(p["limit"], 1, 20) if p.get("limit") is not None else 10,
    )


def validate_generate_recipe_params(raw: Any) -> GenerateRecipeParams:
    p = parse_arguments(raw, "generate_custom_recipe")

    if not isinstance(p.get("ingredients"), list) or not p["ingredients"]:
        raise ToolValidationError("generate_custom_recipe requires at least one ingredient")

    ingredients = [
        name
        for name in (sanitize_ingredient_name(item) for item in _string_list(p["ingredients"], 100, 100))
        if name
    ][:20]

    if not ingredients:
        raise ToolValidationError("generate_custom_recipe requires at least one valid ingredient")

    useful_items = _string_list(p.get("useful_items"), 10, 50) or None

    return GenerateRecipeParams(
        ingredients=ingredients,
        recipe_description=sanitize_string(p["recipe_description"], 500) if p.get("recipe_description") else None,
        cuisine_preference=sanitize_string(p["cuisine_preference"], 50) if p.get("cuisine_preference") else None,
        target_time=clamp_number(p["target_time"], 5, 480) if p.get("target_time") is not None else None,
        difficulty=validate_enum(p["difficulty"], DIFFICULTIES) if p.get("difficulty") is not None else None,
        additional_requests=sanitize_string(p["additional_requests"], 2000) if p.get("additional_requests") else None,
        useful_items=useful_items,
    )


def validate_retrieve_cooked_recipes_params(raw: Any) -> RetrieveCookedRecipesParams:
    p = parse_arguments(raw, "retrieve_cooked_recipes")

    query = sanitize_search_query(p["query"], 200) if isinstance(p.get("query"), str) else ""

    return RetrieveCookedRecipesParams(
        query=query or None,
        timeframe=sanitize_string(p["timeframe"], 100) if p.get("timeframe") else None,
    )


def validate_modify_recipe_params(raw: Any) -> ModifyRecipeParams:
    p = parse_arguments(raw, "modify_recipe")

    request = p.get("modification_request")
    if not isinstance(request, str) or not request.strip():
        raise ToolValidationError("modify_recipe requires a non-empty modification_request")

    return ModifyRecipeParams(modification_request=sanitize_string(request, 2000))
