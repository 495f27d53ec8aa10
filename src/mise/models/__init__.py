"""Mise - Pydantic models shared by tools, LLM calls and the chat workflow."""

from mise.models.recipes import (
    GeneratedRecipe,
    GenerateRecipeResult,
    RecipeCard,
    RecipeIngredient,
    RecipeStep,
    SafetyFlags,
)

__all__ = [
    "GeneratedRecipe",
    "GenerateRecipeResult",
    "RecipeCard",
    "RecipeIngredient",
    "RecipeStep",
    "SafetyFlags",
]
