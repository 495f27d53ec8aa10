"""
Mise - Custom Recipe Generation Tool.

Flow:
1. Allergen pre-check of the requested ingredients (restrictions + custom allergies)
2. Food safety reminders for the prompt
3. Structured generation via Instructor
4. Allergen and food safety check of the generated recipe

Unsafe requests never reach the model; unsafe or unverifiable results are
returned with safety_flags set so every surface can show the caveat.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from mise.llm.client import LLMUsage, call_llm
from mise.models.recipes import GeneratedRecipe, GenerateRecipeResult, SafetyFlags
from mise.observability.usage import UsageLogParams, log_usage
from mise.safety.allergens import check_ingredients_for_allergens, get_allergen_warning
from mise.safety.food_safety import build_safety_reminders, check_recipe_safety
from mise.tools.validators import GenerateRecipeParams

if TYPE_CHECKING:
    from mise.context.builders import UserContext
    from mise.tools.registry import ToolExecutionContext

logger = logging.getLogger(__name__)

GENERATE_CUSTOM_RECIPE_SCHEMA = {
    "type": "function",
    "function": {
        "name": "generate_custom_recipe",
        "description": (
            "Generate a custom recipe based on ingredients the user has available. "
            "Use this when the user wants to create a new recipe from scratch, "
            "tells you what ingredients they have, or asks what they can make. "
            "Before calling this tool, gather at least: ingredients and time available. "
            "Cuisine preference is helpful but optional."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "ingredients": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": 'List of ingredients the user has available (e.g., ["chicken", "rice", "broccoli"])',
                },
                "recipe_description": {
                    "type": "string",
                    "description": 'Short description of the dish the user wants (e.g., "creamy soup")',
                },
                "cuisine_preference": {
                    "type": "string",
                    "description": 'Preferred cuisine style (e.g., "Italian", "Mexican", "Asian", "Mediterranean")',
                },
                "target_time": {
                    "type": "integer",
                    "description": "Target total time in minutes",
                    "minimum": 5,
                    "maximum": 480,
                },
                "difficulty": {
                    "type": "string",
                    "enum": ["easy", "medium", "hard"],
                    "description": "Desired difficulty level",
                },
                "additional_requests": {
                    "type": "string",
                    "description": 'Additional requests or constraints (e.g., "make it spicy", "kid-friendly", "low carb")',
                },
                "useful_items": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": (
                        'Specific kitchen equipment to prioritize for this recipe (e.g., ["air fryer"]). '
                        "Overrides the user's general equipment preferences."
                    ),
                },
            },
            "required": ["ingredients"],
        },
    },
}


# =============================================================================
# Prompts
# =============================================================================


def build_system_prompt(user_context: "UserContext") -> str:
    language = "Spanish" if user_context.language == "es" else "English"
    system = user_context.measurement_system
    units = (
        "cups, tablespoons, teaspoons, ounces, pounds, °F"
        if system == "imperial"
        else "ml, liters, grams, kg, °C"
    )

    return f"""You are a professional recipe creator for a cooking app.
Generate recipes in {language} using {system} measurements ({units}).

CRITICAL RULES:
1. Use ONLY {system} units - never mix systems
2. All text (recipe name, instructions, ingredient names) must be in {language}
3. Include proper cooking temperatures for meat/poultry in the instructions
4. Steps should be clear and numbered
5. Quantities must be practical (use "1/3 cup", not "0.333 cups")

RECIPE NAMING:
- Name the dish for what it IS, not what it ISN'T ("Chicken Ramen", not "Sugar-Free Chicken Ramen")

PREFERENCE BALANCE:
- Hard requirements (allergens, ingredients to avoid) MUST be followed
- Soft preferences (cuisine style, diet types) are suggestions only

Set measurement_system to "{system}" and language to "{user_context.language}"."""


def build_recipe_prompt(
    params: GenerateRecipeParams,
    user_context: "UserContext",
    safety_reminders: str,
) -> str:
    """
    User prompt for recipe generation.

    Order: request, hard requirements, diet approach, soft preferences, safety.
    """
    parts = [f"Create a recipe using these ingredients: {', '.join(params.ingredients)}"]

    if params.recipe_description:
        parts.append(f"Dish: {params.recipe_description}")
    if params.target_time:
        parts.append(f"Total time should be around {params.target_time} minutes or less.")
    if params.cuisine_preference:
        parts.append(f"Style: {params.cuisine_preference} cuisine.")
    if params.difficulty:
        parts.append(f"Difficulty level: {params.difficulty}.")
    if params.additional_requests:
        parts.append(f"Additional requirements: {params.additional_requests}")

    avoid = user_context.ingredient_dislikes + user_context.all_restrictions
    if avoid:
        parts.append("\nHARD REQUIREMENTS (must follow):")
        parts.append(f"MUST AVOID these ingredients: {', '.join(avoid)}")

    diet_types = [d for d in user_context.diet_types if d not in ("none", "other")]
    if diet_types:
        parts.append("\nDIETARY APPROACH (follow for ingredient selection):")
        parts.append(f"User follows: {', '.join(diet_types)}")

    preferences = []
    if user_context.skill_level:
        preferences.append(f"Skill level: {user_context.skill_level}")
    if user_context.household_size:
        preferences.append(f"Default portions: {user_context.household_size}")
    if user_context.cuisine_preferences and not params.cuisine_preference:
        preferences.append(
            f"Cuisine inspiration (optional, vary styles): user enjoys "
            f"{', '.join(user_context.cuisine_preferences)} cooking."
        )
    if params.useful_items:
        preferences.append(f"PRIORITY EQUIPMENT for this recipe: {', '.join(params.useful_items)}")
    elif user_context.kitchen_equipment:
        preferences.append(f"Available equipment: {', '.join(user_context.kitchen_equipment)}")
    if preferences:
        parts.append("\nSoft preferences (consider but be creative):")
        parts.extend(preferences)

    if safety_reminders:
        parts.append(f"\n{safety_reminders}")

    return "\n".join(parts)


def create_empty_recipe(user_context: "UserContext") -> GeneratedRecipe:
    """Placeholder recipe for refused requests."""
    return GeneratedRecipe(
        suggested_name="Receta no disponible" if user_context.language == "es" else "Recipe unavailable",
        measurement_system=user_context.measurement_system,
        language=user_context.language,
        portions=user_context.household_size or 4,
    )


# =============================================================================
# Review
# =============================================================================


def _unverified_caveat(language: str) -> str:
    return "No se pudo verificar alérgenos." if language == "es" else "Allergens could not be verified."


async def review_recipe(
    recipe: GeneratedRecipe,
    user_context: "UserContext",
    allergens_verified: bool = True,
) -> SafetyFlags | None:
    """
    Allergen and food safety check of a model-produced recipe.

    Returns None when the recipe is clean and fully verified, otherwise
    SafetyFlags carrying every warning.
    """
    language = user_context.language

    verdicts, safety = await asyncio.gather(
        check_ingredients_for_allergens(
            [i.name for i in recipe.ingredients], user_context.all_restrictions, language
        ),
        check_recipe_safety(
            recipe.ingredients,
            recipe.total_time or None,
            user_context.measurement_system,
            language,
        ),
    )

    warnings: list[str] = []
    unsafe = next((v for v in verdicts if not v.safe), None)
    if unsafe is not None:
        warnings.append(await get_allergen_warning(unsafe.allergen, unsafe.category, language))
    warnings.extend(safety.warnings)
    if not allergens_verified or not all(v.verified for v in verdicts):
        warnings.append(_unverified_caveat(language))

    if not warnings:
        return None
    return SafetyFlags(allergen_warning=" ".join(warnings))


async def log_recipe_usage(
    context: "ToolExecutionContext",
    usage: LLMUsage,
    call_phase: str,
    function_name: str,
) -> None:
    """Account for a tool's structured model call. Skipped outside a request."""
    if not context.request_id:
        return

    await log_usage(
        UsageLogParams(
            user_id=context.user_context.user_id,
            session_id=context.session_id,
            request_id=context.request_id,
            call_phase=call_phase,
            function_name=function_name,
            usage_type="text",
            model=usage.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=usage.duration_ms,
            metadata={"source": "tool"},
        )
    )


# =============================================================================
# Generation
# =============================================================================


async def generate_custom_recipe(
    params: GenerateRecipeParams,
    context: "ToolExecutionContext",
) -> GenerateRecipeResult:
    """
    Generate a recipe from the user's ingredients.

    Provider errors propagate to the caller.
    """
    user_context = context.user_context
    language = user_context.language

    # 1. Refuse before generation if a requested ingredient is restricted
    verdicts = await check_ingredients_for_allergens(
        params.ingredients, user_context.all_restrictions, language
    )
    unsafe = next((v for v in verdicts if not v.safe), None)
    if unsafe is not None:
        warning = await get_allergen_warning(unsafe.allergen, unsafe.category, language)
        logger.info(f"Refused recipe generation for user {user_context.user_id}: {warning}")
        return GenerateRecipeResult(
            recipe=create_empty_recipe(user_context),
            safety_flags=SafetyFlags(allergen_warning=warning, error=True),
        )
    allergens_verified = all(v.verified for v in verdicts)

    # 2-3. Generate
    reminders = await build_safety_reminders(
        params.ingredients, user_context.measurement_system, language
    )
    result = await call_llm(
        response_model=GeneratedRecipe,
        system_prompt=build_system_prompt(user_context),
        user_prompt=build_recipe_prompt(params, user_context, reminders),
        phase="recipe_generation",
    )
    recipe = result.output

    await log_recipe_usage(context, result.usage, "recipe_generation", "generate_custom_recipe")

    # 4. Check what the model actually produced
    safety_flags = await review_recipe(recipe, user_context, allergens_verified)
    return GenerateRecipeResult(recipe=recipe, safety_flags=safety_flags)
