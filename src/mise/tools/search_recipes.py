"""
Mise - Recipe Search Tool.

Lexical search over published recipes with cuisine and allergen filtering.

Pipeline:
1. Name search (ILIKE on both language columns) with difficulty/time filters
2. Tag search when names alone return too few results
3. Cuisine filter on CULTURAL_CUISINE tags
4. Allergen exclusion using the user's dietary restrictions
5. Keyword relevance scoring, then the final limit
"""

import logging
from typing import TYPE_CHECKING

from mise.db import get_client, run_query
from mise.models.recipes import RecipeCard
from mise.safety.allergens import filter_by_allergens
from mise.tools.normalize import normalize_for_search
from mise.tools.validators import DIFFICULTIES, SearchRecipesParams

if TYPE_CHECKING:
    from mise.context.builders import UserContext

logger = logging.getLogger(__name__)

RECIPE_COLUMNS = (
    "id, name_en, name_es, image_url, total_time, difficulty, portions, "
    "recipe_to_tag ( recipe_tags ( name_en, name_es, categories ) )"
)

SEARCH_RECIPES_SCHEMA = {
    "type": "function",
    "function": {
        "name": "search_recipes",
        "description": (
            "Search the recipe database for existing recipes based on user criteria. "
            "Use this when the user wants to find recipes from the database (not create custom ones). "
            "Returns recipe cards that match the filters. Results are automatically filtered by "
            "the user's dietary restrictions and allergens."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": 'Natural language search query (e.g., "pasta", "healthy dinner", "chicken stir fry")',
                },
                "cuisine": {
                    "type": "string",
                    "description": 'Cuisine type filter (e.g., "Italian", "Asian", "Mexican", "Mediterranean")',
                },
                "max_time": {
                    "type": "integer",
                    "description": "Maximum total cooking time in minutes",
                    "minimum": 1,
                    "maximum": 480,
                },
                "difficulty": {
                    "type": "string",
                    "enum": ["easy", "medium", "hard"],
                    "description": "Recipe difficulty level",
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of results to return (default: 10)",
                    "minimum": 1,
                    "maximum": 20,
                },
            },
            "required": [],
        },
    },
}


async def search_recipes(params: SearchRecipesParams, user_context: "UserContext") -> list[RecipeCard]:
    """
    Search recipes for the user.

    A failing data layer degrades to an empty result.
    """
    try:
        return await _search(params, user_context)
    except Exception as e:
        logger.warning(f"Recipe search failed for user {user_context.user_id}: {e}")
        return []


async def _search(params: SearchRecipesParams, user_context: "UserContext") -> list[RecipeCard]:
    language = user_context.language
    fetch_limit = max(params.limit * 3, 30)
    # "la pasta" and "the pasta" search as "pasta"
    search_text = normalize_for_search(params.query) if params.query else None

    query = (
        get_client()
        .table("recipes")
        .select(RECIPE_COLUMNS)
        .eq("is_published", True)
        .order("created_at", desc=True)
    )
    if params.difficulty:
        query = query.eq("difficulty", params.difficulty)
    if params.max_time:
        query = query.lte("total_time", params.max_time)
    if search_text:
        term = f"%{search_text}%"
        query = query.or_(f"name_en.ilike.{term},name_es.ilike.{term}")

    response = await run_query(query.limit(fetch_limit))
    results: list[dict] = response.data or []
    logger.debug(f"Name search for '{search_text}' returned {len(results)} recipe(s)")

    if search_text and len(results) < params.limit:
        seen = {r["id"] for r in results}
        tag_results = await _search_by_tags(search_text, params, fetch_limit)
        results.extend(r for r in tag_results if r["id"] not in seen)

    if not results:
        return []

    filtered = results
    if params.cuisine:
        filtered = [r for r in results if _matches_cuisine(r, params.cuisine, language)]

    if user_context.dietary_restrictions and filtered:
        with_ingredients = await _fetch_recipe_ingredients([r["id"] for r in filtered])
        safe = await filter_by_allergens(with_ingredients, user_context.dietary_restrictions, language)
        safe_ids = {r["id"] for r in safe}
        logger.debug(f"Allergen filtering kept {len(safe_ids)} of {len(filtered)} recipe(s)")
        filtered = [r for r in filtered if r["id"] in safe_ids]

    if search_text:
        filtered = _score_by_query(filtered, search_text, language)

    return [_to_card(r, language) for r in filtered[: params.limit]]


# =============================================================================
# Helpers
# =============================================================================


def _localized(row: dict | None, language: str) -> str:
    if not row:
        return ""
    return (row.get("name_es") if language == "es" else row.get("name_en")) or ""


def _tags(recipe: dict) -> list[dict]:
    return [join["recipe_tags"] for join in recipe.get("recipe_to_tag") or [] if join.get("recipe_tags")]


def _to_card(recipe: dict, language: str) -> RecipeCard:
    return RecipeCard(
        recipe_id=recipe["id"],
        name=_localized(recipe, language) or "Untitled",
        image_url=recipe.get("image_url"),
        total_time=recipe.get("total_time") or 0,
        difficulty=recipe.get("difficulty") if recipe.get("difficulty") in DIFFICULTIES else "easy",
        portions=max(1, recipe.get("portions") or 1),
    )


async def _search_by_tags(search_text: str, params: SearchRecipesParams, limit: int) -> list[dict]:
    """Recipes linked to any tag whose name matches the search text."""
    client = get_client()
    term = f"%{search_text}%"

    tags = await run_query(
        client.table("recipe_tags").select("id").or_(f"name_en.ilike.{term},name_es.ilike.{term}")
    )
    tag_ids = [t["id"] for t in tags.data or []]
    if not tag_ids:
        return []

    joins = await run_query(client.table("recipe_to_tag").select("recipe_id").in_("tag_id", tag_ids))
    recipe_ids = list(dict.fromkeys(j["recipe_id"] for j in joins.data or []))
    if not recipe_ids:
        return []

    query = client.table("recipes").select(RECIPE_COLUMNS).in_("id", recipe_ids).eq("is_published", True)
    if params.difficulty:
        query = query.eq("difficulty", params.difficulty)
    if params.max_time:
        query = query.lte("total_time", params.max_time)

    response = await run_query(query.limit(limit))
    return response.data or []


def _matches_cuisine(recipe: dict, cuisine: str, language: str) -> bool:
    cuisine = cuisine.lower()
    return any(
        "CULTURAL_CUISINE" in (tag.get("categories") or []) and cuisine in _localized(tag, language).lower()
        for tag in _tags(recipe)
    )


async def _fetch_recipe_ingredients(recipe_ids: list[str]) -> list[dict]:
    """Bilingual ingredient names per recipe, for allergen filtering."""
    response = await run_query(
        get_client()
        .table("recipes")
        .select("id, recipe_ingredients ( ingredients ( name_en, name_es ) )")
        .in_("id", recipe_ids)
    )

    return [
        {
            "id": row["id"],
            "ingredients": [
                {
                    "name_en": ri["ingredients"].get("name_en") or "",
                    "name_es": ri["ingredients"].get("name_es") or "",
                }
                for ri in row.get("recipe_ingredients") or []
                if ri.get("ingredients")
            ],
        }
        for row in response.data or []
    ]


def _score_by_query(recipes: list[dict], query: str, language: str) -> list[dict]:
    """Stable sort by keyword relevance on names and tags."""
    query = query.lower()
    keywords = [k for k in query.split() if len(k) > 2]

    def score(recipe: dict) -> int:
        name = _localized(recipe, language).lower()
        total = 0
        if name == query:
            total += 100
        elif query in name:
            total += 50
        total += sum(10 for k in keywords if k in name)

        for tag in _tags(recipe):
            tag_name = _localized(tag, language).lower()
            if query in tag_name:
                total += 20
            total += sum(5 for k in keywords if k in tag_name)

        return total

    return sorted(recipes, key=score, reverse=True)
