"""
Mise - Recipe Models.

These models are used for:
- Tool results returned to every surface (text and voice)
- Structured LLM outputs via Instructor (GeneratedRecipe)
"""

from typing import Literal

from pydantic import BaseModel, Field

Difficulty = Literal["easy", "medium", "hard"]


# =============================================================================
# Search Results
# =============================================================================


class RecipeCard(BaseModel):
    """A recipe summary as shown in search and cooked-history results."""

    recipe_id: str
    name: str
    image_url: str | None = None
    total_time: int = 0
    difficulty: Difficulty = "easy"
    portions: int = 1
    allergen_warnings: list[str] = Field(default_factory=list)


# =============================================================================
# Generated Recipes
# =============================================================================


class RecipeIngredient(BaseModel):
    """One ingredient line of a generated recipe."""

    name: str
    quantity: float = Field(gt=0)
    unit: str


class RecipeStep(BaseModel):
    """One instruction step of a generated recipe."""

    order: int = Field(ge=1)
    instruction: str


class GeneratedRecipe(BaseModel):
    """
    A recipe created by the model from the user's ingredients.

    Also the Instructor response model for recipe generation.
    """

    schema_version: Literal["1.0"] = "1.0"
    suggested_name: str
    measurement_system: Literal["imperial", "metric"] = "imperial"
    language: Literal["en", "es"] = "en"
    ingredients: list[RecipeIngredient] = Field(default_factory=list)
    steps: list[RecipeStep] = Field(default_factory=list)
    total_time: int = Field(default=0, ge=0)
    difficulty: Difficulty = "easy"
    portions: int = Field(default=1, ge=1)
    tags: list[str] = Field(default_factory=list)


class SafetyFlags(BaseModel):
    """Safety caveats attached to a generated recipe."""

    allergen_warning: str | None = None
    error: bool = False


class GenerateRecipeResult(BaseModel):
    """Result of generate_custom_recipe."""

    recipe: GeneratedRecipe
    safety_flags: SafetyFlags | None = None
