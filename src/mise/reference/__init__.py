"""
Mise - Reference data.

Near-static tables read on every request and cached for the process lifetime.
"""

from mise.reference.cache import ReferenceCache
from mise.reference.tables import (
    AllergenEntry,
    FoodSafetyRule,
    alias_cache,
    allergen_cache,
    clear_reference_caches,
    safety_rule_cache,
)

__all__ = [
    "AllergenEntry",
    "FoodSafetyRule",
    "ReferenceCache",
    "alias_cache",
    "allergen_cache",
    "clear_reference_caches",
    "safety_rule_cache",
]
