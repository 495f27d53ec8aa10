"""
Mise - Recipe Modification Tool.

Changes the most recently generated recipe of the conversation ("make it
for 6", "without nuts", "make it spicier").

The recipe comes from the custom_recipe stored with an earlier assistant
turn, never from model arguments. The modified recipe goes through the same
allergen and food safety review as a fresh one, against its own ingredients.
"""

import json
import logging
from typing import TYPE_CHECKING, Sequence

from pydantic import ValidationError

from mise.llm.client import call_llm
from mise.models.recipes import GeneratedRecipe, GenerateRecipeResult
from mise.tools.generate_recipe import build_system_prompt, log_recipe_usage, review_recipe
from mise.tools.validators import ModifyRecipeParams, ToolValidationError

if TYPE_CHECKING:
    from mise.context.builders import HistoryMessage, UserContext
    from mise.tools.registry import ToolExecutionContext

logger = logging.getLogger(__name__)

MODIFY_RECIPE_SCHEMA = {
    "type": "function",
    "function": {
        "name": "modify_recipe",
        "description": (
            "Modify a previously generated recipe. Use when the user wants to change, adjust, or tweak "
            "a recipe that was just created (e.g. 'make it for 6', 'without nuts', 'make it spicier'). "
            "The original recipe is automatically extracted from conversation history."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "modification_request": {
                    "type": "string",
                    "description": 'What to change (e.g., "make it for 6", "remove nuts", "make it spicier")',
                },
            },
            "required": ["modification_request"],
        },
    },
}

MODIFICATION_RULES = """

MODIFICATION MODE:
You are modifying an existing recipe, NOT creating one from scratch.
- Only change what the modification asks for. Keep everything else the same.
- When scaling portions, adjust ALL ingredient quantities proportionally.
- When removing an ingredient, update steps that reference it.
- When adding an ingredient, add it to the ingredients list and update relevant steps.
- Ensure the recipe name accurately describes the modified dish.
- Return the COMPLETE modified recipe, same schema as the original."""


def find_last_generated_recipe(history: Sequence["HistoryMessage"]) -> GeneratedRecipe:
    """
    Most recent valid generated recipe in the conversation.

    Raises:
        ToolValidationError: no usable recipe in history
    """
    for message in reversed(history):
        if not message.custom_recipe:
            continue
        try:
            return GeneratedRecipe.model_validate(message.custom_recipe)
        except ValidationError as e:
            logger.warning(f"Skipping malformed recipe in history: {e.error_count()} error(s)")

    raise ToolValidationError(
        "No previously generated recipe found in this conversation. "
        "Ask the user what recipe they'd like to create or modify."
    )


def build_modification_prompt(
    original: GeneratedRecipe,
    params: ModifyRecipeParams,
    user_context: "UserContext",
) -> str:
    parts = [
        "ORIGINAL RECIPE:",
        json.dumps(original.model_dump(), indent=2, ensure_ascii=False),
        f"\nMODIFICATION REQUEST:\n{params.modification_request}",
    ]

    avoid = user_context.ingredient_dislikes + user_context.all_restrictions
    if avoid:
        parts.append(f"\nMUST AVOID: {', '.join(avoid)}")

    diet_types = [d for d in user_context.diet_types if d not in ("none", "other")]
    if diet_types:
        parts.append(f"User follows: {', '.join(diet_types)}")

    return "\n".join(parts)


async def modify_recipe(
    params: ModifyRecipeParams,
    context: "ToolExecutionContext",
) -> GenerateRecipeResult:
    """
    Apply a modification to the last generated recipe.

    Provider errors propagate to the caller.
    """
    user_context = context.user_context
    original = find_last_generated_recipe(user_context.conversation_history)
    logger.info(
        f"Modifying '{original.suggested_name}' for user {user_context.user_id}: "
        f"{len(original.ingredients)} ingredient(s), {len(original.steps)} step(s)"
    )

    result = await call_llm(
        response_model=GeneratedRecipe,
        system_prompt=build_system_prompt(user_context) + MODIFICATION_RULES,
        user_prompt=build_modification_prompt(original, params, user_context),
        phase="modification",
    )
    recipe = result.output

    await log_recipe_usage(context, result.usage, "modification", "modify_recipe")

    safety_flags = await review_recipe(recipe, user_context)
    return GenerateRecipeResult(recipe=recipe, safety_flags=safety_flags)
