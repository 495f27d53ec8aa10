"""
Mise - Reference tables.

Loaders and cache instances for the three reference tables:
- ingredient_aliases: (alias, language) -> canonical ingredient
- allergen_groups: category -> allergen entries
- food_safety_rules: minimum temperature and cook time per ingredient

Callers go through the cache instances; nothing else reads these tables.
"""

from dataclasses import dataclass

from mise.db import get_client, run_query
from mise.reference.cache import ReferenceCache


# =============================================================================
# Row Types
# =============================================================================


@dataclass(frozen=True)
class AllergenEntry:
    """One canonical ingredient belonging to an allergen category."""

    category: str
    ingredient_canonical: str
    name_en: str | None = None
    name_es: str | None = None

    def display_name(self, language: str) -> str:
        name = self.name_es if language == "es" else self.name_en
        return name or self.ingredient_canonical.replace("_", " ")


@dataclass(frozen=True)
class FoodSafetyRule:
    """Minimum safe cooking parameters for a canonical ingredient."""

    ingredient_canonical: str
    category: str
    min_temp_c: float
    min_temp_f: float
    min_cook_min: int

    def temperature(self, measurement_system: str) -> str:
        if measurement_system == "imperial":
            return f"{_format_number(self.min_temp_f)}°F"
        return f"{_format_number(self.min_temp_c)}°C"


def _format_number(value: float) -> str:
    """70.0 -> '70', 62.8 -> '62.8'."""
    return f"{value:g}"


def _clean(text: str | None) -> str:
    return " ".join((text or "").lower().split())


# =============================================================================
# Loaders
# =============================================================================


async def load_aliases() -> dict[tuple[str, str], str]:
    """Load every alias, keyed by (lower-cased alias, language)."""
    client = get_client()
    response = await run_query(
        client.table("ingredient_aliases").select("canonical, alias, language")
    )

    aliases: dict[tuple[str, str], str] = {}
    for row in response.data or []:
        alias = _clean(row.get("alias"))
        canonical = row.get("canonical")
        if not alias or not canonical:
            continue
        aliases[(alias, row.get("language") or "en")] = canonical

    return aliases


async def load_allergen_groups() -> dict[str, list[AllergenEntry]]:
    """Load allergen entries grouped by category."""
    client = get_client()
    response = await run_query(
        client.table("allergen_groups").select("category, ingredient_canonical, name_en, name_es")
    )

    groups: dict[str, list[AllergenEntry]] = {}
    for row in response.data or []:
        if not row.get("category") or not row.get("ingredient_canonical"):
            continue
        entry = AllergenEntry(
            category=row["category"],
            ingredient_canonical=row["ingredient_canonical"],
            name_en=row.get("name_en"),
            name_es=row.get("name_es"),
        )
        groups.setdefault(entry.category, []).append(entry)

    return groups


async def load_food_safety_rules() -> list[FoodSafetyRule]:
    """Load all food safety rules."""
    client = get_client()
    response = await run_query(
        client.table("food_safety_rules").select(
            "ingredient_canonical, category, min_temp_c, min_temp_f, min_cook_min"
        )
    )

    return [
        FoodSafetyRule(
            ingredient_canonical=row["ingredient_canonical"],
            category=row.get("category") or "",
            min_temp_c=float(row["min_temp_c"]),
            min_temp_f=float(row["min_temp_f"]),
            min_cook_min=int(row["min_cook_min"]),
        )
        for row in response.data or []
        if row.get("ingredient_canonical")
    ]


# =============================================================================
# Cache Instances
# =============================================================================


alias_cache: ReferenceCache[dict[tuple[str, str], str]] = ReferenceCache(
    "ingredient_aliases", load_aliases, dict
)
allergen_cache: ReferenceCache[dict[str, list[AllergenEntry]]] = ReferenceCache(
    "allergen_groups", load_allergen_groups, dict
)
safety_rule_cache: ReferenceCache[list[FoodSafetyRule]] = ReferenceCache(
    "food_safety_rules", load_food_safety_rules, list
)


def clear_reference_caches() -> None:
    """Reset all reference caches (tests, or after a reference data update)."""
    alias_cache.clear()
    allergen_cache.clear()
    safety_rule_cache.clear()
