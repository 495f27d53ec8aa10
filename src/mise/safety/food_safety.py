"""
Mise - Food Safety Validation.

Checks recipe ingredients against minimum cooking temperatures and times.

Rule selection:
- A rule applies when its canonical ingredient equals the normalized
  ingredient or appears in it as a whole term ("chicken" applies to
  "chicken_breast", never to "chickpea").
- When several rules apply, the most specific wins: an exact match first,
  then the rule with more terms, then the longer name. "ground_beef" (160°F)
  therefore beats "beef" (145°F) for ground beef, while a whole-cut "beef"
  ingredient only ever matches the "beef" rule.

If rules or ingredient aliases cannot be loaded the check reports
safe=False with an explicit "verification unavailable" warning instead of
a silent pass.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Sequence

from mise.reference.tables import FoodSafetyRule, alias_cache, safety_rule_cache
from mise.tools.normalize import extract_quantity_unit, resolve_alias

logger = logging.getLogger(__name__)

VERIFICATION_UNAVAILABLE = {
    "en": "Food safety verification is unavailable right now. Cook all meat, poultry, "
    "seafood and eggs to safe internal temperatures.",
    "es": "La verificación de seguridad alimentaria no está disponible en este momento. "
    "Cocina toda la carne, aves, mariscos y huevos a temperaturas internas seguras.",
}


@dataclass
class SafetyCheckResult:
    """Outcome of a recipe safety check."""

    safe: bool
    warnings: list[str] = field(default_factory=list)
    verified: bool = True


# =============================================================================
# Rule Matching
# =============================================================================


def _terms(canonical: str) -> list[str]:
    return [t for t in re.split(r"[\s_-]+", canonical.lower()) if t]


@lru_cache(maxsize=1024)
def _rule_pattern(canonical: str) -> re.Pattern:
    body = r"[\s_-]+".join(re.escape(t) for t in _terms(canonical))
    return re.compile(rf"(?:^|[\s_-]){body}(?:$|[\s_-])", re.IGNORECASE)


def ingredient_matches_rule(ingredient: str, rule_canonical: str) -> bool:
    """Exact match, or the rule's ingredient appears in it as a whole term."""
    if ingredient == rule_canonical:
        return True
    if not _terms(rule_canonical):
        return False
    return bool(_rule_pattern(rule_canonical).search(ingredient))


def _specificity(ingredient: str, rule: FoodSafetyRule) -> tuple[int, int, int]:
    canonical = rule.ingredient_canonical
    return (
        1 if canonical == ingredient else 0,
        len(_terms(canonical)),
        len(canonical),
    )


def select_rule(ingredient: str, rules: Sequence[FoodSafetyRule]) -> FoodSafetyRule | None:
    """Pick the most specific rule that applies to a normalized ingredient."""
    candidates = [r for r in rules if ingredient_matches_rule(ingredient, r.ingredient_canonical)]
    if not candidates:
        return None
    return max(candidates, key=lambda r: _specificity(ingredient, r))


def format_ingredient_name(name: str) -> str:
    """ground_beef -> Ground Beef"""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_") if word)


def _ingredient_text(ingredient: Any) -> str:
    if isinstance(ingredient, str):
        # "1 lb ground beef" -> "ground beef"
        return extract_quantity_unit(ingredient)[2]
    if isinstance(ingredient, dict):
        return ingredient.get("name") or ""
    return getattr(ingredient, "name", "") or ""


def _safety_warning(rule: FoodSafetyRule, measurement_system: str, language: str) -> str:
    name = format_ingredient_name(rule.ingredient_canonical)
    temp = rule.temperature(measurement_system)
    if language == "es":
        return (
            f"{name} requiere al menos {rule.min_cook_min} minutos de cocción "
            f"y una temperatura interna de {temp}."
        )
    return (
        f"{name} requires at least {rule.min_cook_min} minutes of cooking "
        f"and an internal temperature of {temp}."
    )


# =============================================================================
# Checks
# =============================================================================


async def check_recipe_safety(
    ingredients: Sequence[Any],
    total_time: float | None = None,
    measurement_system: str = "imperial",
    language: str = "en",
) -> SafetyCheckResult:
    """
    Check recipe ingredients for food safety concerns.

    Args:
        ingredients: Ingredient names, ingredient lines ("1 lb ground beef"),
            or objects/dicts with a "name"
        total_time: Total recipe time in minutes; None means unknown
        measurement_system: "imperial" (°F) or "metric" (°C)
        language: "en" or "es" for warning text

    Returns:
        SafetyCheckResult. A matched rule warns when total_time is unknown
        or shorter than the rule's minimum cook time.
    """
    rules, aliases = await asyncio.gather(safety_rule_cache.get(), alias_cache.get())
    if not rules or not aliases:
        missing = "food_safety_rules" if not rules else "ingredient_aliases"
        logger.warning(f"Food safety verification unavailable: {missing} not loaded")
        return SafetyCheckResult(
            safe=False,
            warnings=[VERIFICATION_UNAVAILABLE.get(language, VERIFICATION_UNAVAILABLE["en"])],
            verified=False,
        )

    # One rule per canonical rule name, in first-seen order
    matched: dict[str, FoodSafetyRule] = {}
    for ingredient in ingredients:
        text = _ingredient_text(ingredient)
        if not text:
            continue
        normalized = resolve_alias(aliases, text, language)
        rule = select_rule(normalized, rules)
        if rule is not None:
            matched.setdefault(rule.ingredient_canonical, rule)

    warnings = [
        _safety_warning(rule, measurement_system, language)
        for rule in matched.values()
        if total_time is None or total_time < rule.min_cook_min
    ]

    return SafetyCheckResult(safe=not warnings, warnings=warnings)


async def get_recommended_temp(
    ingredient: str,
    measurement_system: str = "imperial",
    language: str = "en",
) -> str | None:
    """Recommended internal temperature for an ingredient, e.g. "165°F"."""
    rules = await safety_rule_cache.get()
    if not rules:
        return None

    aliases = await alias_cache.get()
    rule = select_rule(resolve_alias(aliases, _ingredient_text(ingredient), language), rules)
    return rule.temperature(measurement_system) if rule else None


async def build_safety_reminders(
    ingredients: Sequence[str],
    measurement_system: str = "imperial",
    language: str = "en",
) -> str:
    """
    Build the food safety block for a recipe generation prompt.

    Returns "" when no ingredient is safety-critical.
    """
    rules = await safety_rule_cache.get()
    if not rules:
        return ""

    aliases = await alias_cache.get()

    reminders: list[str] = []
    for ingredient in ingredients:
        rule = select_rule(resolve_alias(aliases, _ingredient_text(ingredient), language), rules)
        if rule is None:
            continue
        reminder = (
            f"{format_ingredient_name(rule.ingredient_canonical)} must reach "
            f"internal temp of {rule.temperature(measurement_system)}"
        )
        if reminder not in reminders:
            reminders.append(reminder)

    if not reminders:
        return ""

    return "FOOD SAFETY REQUIREMENTS:\n" + "\n".join(reminders)
