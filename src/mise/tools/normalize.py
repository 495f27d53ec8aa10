"""
Mise - Ingredient Normalization.

Text normalization plus bilingual alias resolution to canonical ingredients.

Canonical ingredients are the join key for allergen and food-safety data,
e.g. "Ground Beef", "carne molida" and "GROUND BEEF " all become "ground_beef".
Unknown ingredients pass through lower-cased so downstream checks can treat
them as unverifiable instead of failing.
"""

import re

from mise.reference.tables import alias_cache

SUPPORTED_LANGUAGES = ("en", "es")


def normalize_name(name: str) -> str:
    """
    Normalize a name for consistent matching.

    Operations:
    - Lowercase
    - Strip leading/trailing whitespace
    - Collapse multiple spaces to single space

    Examples:
        normalize_name("  Chicken Thighs  ") -> "chicken thighs"
        normalize_name("green   pepper") -> "green pepper"
    """
    return " ".join(name.lower().strip().split())


def normalize_for_search(query: str) -> str:
    """
    Normalize a search query.

    Same as normalize_name but also removes common filler words (en/es).
    """
    normalized = normalize_name(query)

    filler_words = {"a", "an", "the", "some", "any", "un", "una", "el", "la", "los", "las", "de"}
    filtered = [w for w in normalized.split() if w not in filler_words]

    return " ".join(filtered) if filtered else normalized


# Common unit aliases - map to standard form
UNIT_ALIASES = {
    "pounds": "lb",
    "pound": "lb",
    "lbs": "lb",
    "ounces": "oz",
    "ounce": "oz",
    "grams": "g",
    "gram": "g",
    "gramos": "g",
    "kilograms": "kg",
    "kilogram": "kg",
    "kilos": "kg",
    "liters": "l",
    "liter": "l",
    "litros": "l",
    "milliliters": "ml",
    "milliliter": "ml",
    "cups": "cup",
    "taza": "cup",
    "tazas": "cup",
    "tablespoons": "tbsp",
    "tablespoon": "tbsp",
    "cucharada": "tbsp",
    "cucharadas": "tbsp",
    "teaspoons": "tsp",
    "teaspoon": "tsp",
    "cucharadita": "tsp",
    "cucharaditas": "tsp",
    "pieces": "piece",
    "piezas": "piece",
    "cloves": "clove",
    "dientes": "clove",
}

KNOWN_UNITS = set(UNIT_ALIASES) | set(UNIT_ALIASES.values()) | {"can", "cans", "pinch"}


def clean_unit(unit: str) -> str:
    """
    Clean and normalize a unit string.

    Examples:
        clean_unit("LBS") -> "lb"
        clean_unit("tazas") -> "cup"
    """
    unit = unit.lower().strip()
    return UNIT_ALIASES.get(unit, unit)


def extract_quantity_unit(text: str) -> tuple[float | None, str | None, str]:
    """
    Split a leading quantity and unit off an ingredient line.

    Returns:
        Tuple of (quantity, unit, remaining_text)
        Returns (None, None, text) if no quantity found

    Examples:
        "1 lb ground beef" -> (1.0, "lb", "ground beef")
        "1/2 taza de arroz" -> (0.5, "cup", "arroz")
        "chicken" -> (None, None, "chicken")
    """
    text = text.strip()

    # Fractions first so "1/2" is not read as "1"
    match = re.match(r"^(\d+/\d+|\d+(?:[.,]\d+)?)\s*", text)
    if not match:
        return (None, None, text)

    qty_str = match.group(1)
    remaining = text[match.end() :].strip()

    if "/" in qty_str:
        numerator, denominator = qty_str.split("/")
        quantity = float(numerator) / float(denominator)
    else:
        quantity = float(qty_str.replace(",", "."))

    unit_match = re.match(r"^(\w+)\.?\s*(?:(?:of|de)\s+)?(.*)$", remaining, re.IGNORECASE)
    if unit_match and unit_match.group(1).lower() in KNOWN_UNITS:
        return (quantity, clean_unit(unit_match.group(1)), unit_match.group(2).strip())

    return (quantity, None, remaining)


# =============================================================================
# Canonical Resolution
# =============================================================================


def resolve_alias(aliases: dict[tuple[str, str], str], name: str, language: str = "en") -> str:
    """
    Resolve a name against a loaded alias table.

    Lookup order:
    1. (name, language)
    2. (name, "en")
    3. (name, "es")
    4. the normalized name itself
    """
    normalized = normalize_name(name)

    for lang in (language, *SUPPORTED_LANGUAGES):
        canonical = aliases.get((normalized, lang))
        if canonical:
            return canonical

    return normalized


async def normalize_ingredient(name: str, language: str = "en") -> str:
    """
    Normalize a single ingredient name to its canonical form.

    Examples:
        await normalize_ingredient("GROUND BEEF ") -> "ground_beef"
        await normalize_ingredient("carne molida", "es") -> "ground_beef"
        await normalize_ingredient("dragonfruit") -> "dragonfruit"
    """
    aliases = await alias_cache.get()
    return resolve_alias(aliases, name, language)


async def normalize_ingredients(names: list[str], language: str = "en") -> list[str]:
    """Normalize a batch of names against a single alias table load."""
    aliases = await alias_cache.get()
    return [resolve_alias(aliases, name, language) for name in names]
