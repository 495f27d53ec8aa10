"""
Mise - Allergen Filter.

Rule-based allergen checks over normalized ingredients, using the
allergen_groups reference table.

Matching is separator-aware rather than raw substring: "egg" matches
"egg", "egg_white" and "boiled egg" but never "eggplant". Underscores,
spaces and hyphens are interchangeable inside an allergen name.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Sequence

from mise.reference.tables import AllergenEntry, alias_cache, allergen_cache
from mise.tools.normalize import resolve_alias

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllergenVerdict:
    """
    Result of checking one ingredient against the user's restrictions.

    verified is False when the allergen or alias table could not be loaded,
    in which case safe=True only means "nothing found", not "checked and clean".
    """

    safe: bool
    allergen: str | None = None
    category: str | None = None
    verified: bool = True


SAFE = AllergenVerdict(safe=True)
UNVERIFIED = AllergenVerdict(safe=True, verified=False)


@lru_cache(maxsize=1024)
def _allergen_pattern(allergen: str) -> re.Pattern:
    escaped = re.escape(allergen.lower())
    # re.escape leaves "_" alone but escapes "-" and " "
    escaped = escaped.replace(r"\-", "-").replace(r"\ ", " ")
    flexible = re.sub(r"[_\- ]", r"[\\s_-]", escaped)
    return re.compile(rf"(^|[\s,_-]){flexible}([\s,_-]|$)", re.IGNORECASE)


def matches_allergen(normalized_ingredient: str, allergen: str) -> bool:
    """Check whether a normalized ingredient contains an allergen as a whole term."""
    if normalized_ingredient == allergen:
        return True
    return bool(_allergen_pattern(allergen).search(normalized_ingredient))


def _find_allergen(
    normalized: str,
    restrictions: Sequence[str],
    groups: dict[str, list[AllergenEntry]],
) -> AllergenVerdict:
    for restriction in restrictions:
        for entry in groups.get(restriction, []):
            if matches_allergen(normalized, entry.ingredient_canonical):
                return AllergenVerdict(
                    safe=False,
                    allergen=entry.ingredient_canonical,
                    category=restriction,
                )
    return SAFE


async def _load_reference_data() -> tuple[dict[str, list[AllergenEntry]], dict[tuple[str, str], str]] | None:
    """
    Allergen groups and aliases, or None if either is unavailable.

    Without aliases a localized name ("leche") never reaches its canonical
    form, so a clean result could not be trusted.
    """
    groups, aliases = await asyncio.gather(allergen_cache.get(), alias_cache.get())
    if not groups or not aliases:
        missing = "allergen_groups" if not groups else "ingredient_aliases"
        logger.warning(f"Allergen verification unavailable: {missing} not loaded")
        return None
    return groups, aliases


# =============================================================================
# Checks
# =============================================================================


async def check_ingredient_for_allergens(
    name: str,
    restrictions: Sequence[str],
    language: str = "en",
) -> AllergenVerdict:
    """
    Check a single ingredient against the user's restriction categories.

    Args:
        name: Free-text ingredient name (any supported language)
        restrictions: Allergen categories, e.g. ["nuts", "dairy"]
        language: Preferred language for alias resolution

    Returns:
        First match as (allergen, category), or a safe verdict.
    """
    if not restrictions:
        return SAFE

    reference = await _load_reference_data()
    if reference is None:
        return UNVERIFIED

    groups, aliases = reference
    return _find_allergen(resolve_alias(aliases, name, language), restrictions, groups)


async def check_ingredients_for_allergens(
    names: Sequence[str],
    restrictions: Sequence[str],
    language: str = "en",
) -> list[AllergenVerdict]:
    """Check several ingredients, returning one verdict per name."""
    if not restrictions:
        return [SAFE for _ in names]

    reference = await _load_reference_data()
    if reference is None:
        return [UNVERIFIED for _ in names]

    groups, aliases = reference
    return [
        _find_allergen(resolve_alias(aliases, name, language), restrictions, groups)
        for name in names
    ]


def _ingredient_name(ingredient: Any, language: str) -> str | None:
    if isinstance(ingredient, str):
        return ingredient
    if language == "es":
        return ingredient.get("name_es") or ingredient.get("name_en")
    return ingredient.get("name_en") or ingredient.get("name_es")


async def filter_by_allergens(
    recipes: list[dict],
    restrictions: Sequence[str],
    language: str = "en",
) -> list[dict]:
    """
    Drop recipes containing any restricted allergen.

    Recipes carry "ingredients": [{"name_en": ..., "name_es": ...}].
    Empty restrictions return the input untouched without loading any table.
    If the allergen or alias table is unavailable nothing can be verified,
    so no recipe is returned.
    """
    if not restrictions:
        return recipes

    reference = await _load_reference_data()
    if reference is None:
        logger.warning(
            f"Withholding {len(recipes)} recipe(s) for restrictions {list(restrictions)}"
        )
        return []

    groups, aliases = reference

    results = []
    for recipe in recipes:
        safe = True
        for ingredient in recipe.get("ingredients") or []:
            name = _ingredient_name(ingredient, language)
            if not name:
                continue
            normalized = resolve_alias(aliases, name, language)
            if not _find_allergen(normalized, restrictions, groups).safe:
                safe = False
                break
        if safe:
            results.append(recipe)

    return results


async def get_allergen_warning(allergen: str, category: str, language: str = "en") -> str:
    """User-facing allergen warning in the user's language."""
    groups = await allergen_cache.get()

    entry = next(
        (e for entries in groups.values() for e in entries if e.ingredient_canonical == allergen),
        None,
    )

    if entry is None:
        plain = allergen.replace("_", " ")
        return f"Contiene {plain}" if language == "es" else f"Contains {plain}"

    name = entry.display_name(language)
    if language == "es":
        return f"Advertencia: Contiene {name} ({category})"
    return f"Warning: Contains {name} ({category})"
