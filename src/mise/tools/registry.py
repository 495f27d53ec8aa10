"""
Mise - Tool Registry.

Single source of truth for every tool the model can call. Each registration
wires together:
- schema: the OpenAI function-tool definition shown to the model
- allowed_in_voice: whether the voice surface may offer it
- execute: validate raw arguments, then run
- shape_result: normalize output to {recipes} | {custom_recipe, safety_flags} | {result}

Text and voice surfaces both read this table, so a voice-eligible tool has
the same schema and the same shaped result on either surface.

Usage:
    result = await execute_tool("search_recipes", '{"query": "pasta"}', context)
    shaped = get_tool_registration("search_recipes").shape_result(result)
"""

import copy
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable

from mise.context.builders import UserContext
from mise.models.recipes import GenerateRecipeResult, RecipeCard
from mise.tools.generate_recipe import GENERATE_CUSTOM_RECIPE_SCHEMA, generate_custom_recipe
from mise.tools.modify_recipe import MODIFY_RECIPE_SCHEMA, modify_recipe
from mise.tools.retrieve_cooked_recipes import RETRIEVE_COOKED_RECIPES_SCHEMA, retrieve_cooked_recipes
from mise.tools.search_recipes import SEARCH_RECIPES_SCHEMA, search_recipes
from mise.tools.validators import (
    ToolValidationError,
    parse_arguments,
    validate_generate_recipe_params,
    validate_modify_recipe_params,
    validate_retrieve_cooked_recipes_params,
    validate_search_recipes_params,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolExecutionContext:
    """Per-call context handed to every tool."""

    user_context: UserContext
    session_id: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class ToolRegistration:
    """One tool's schema, surface eligibility, executor and result shaper."""

    name: str
    schema: dict[str, Any]
    allowed_in_voice: bool
    execute: Callable[[dict[str, Any], ToolExecutionContext], Awaitable[Any]]
    shape_result: Callable[[Any], dict[str, Any]]


# =============================================================================
# Result Shapers
# =============================================================================


def shape_recipe_cards(result: list[RecipeCard]) -> dict[str, Any]:
    return {"recipes": [card.model_dump() for card in result]}


def shape_custom_recipe(result: GenerateRecipeResult) -> dict[str, Any]:
    return {
        "custom_recipe": result.recipe.model_dump(),
        "safety_flags": result.safety_flags.model_dump(exclude_none=True) if result.safety_flags else None,
    }


def shape_generic(result: Any) -> dict[str, Any]:
    return {"result": result}


# =============================================================================
# Executors
# =============================================================================


async def _execute_search_recipes(args: dict[str, Any], context: ToolExecutionContext) -> list[RecipeCard]:
    return await search_recipes(validate_search_recipes_params(args), context.user_context)


async def _execute_generate_custom_recipe(
    args: dict[str, Any], context: ToolExecutionContext
) -> GenerateRecipeResult:
    return await generate_custom_recipe(validate_generate_recipe_params(args), context)


async def _execute_modify_recipe(args: dict[str, Any], context: ToolExecutionContext) -> GenerateRecipeResult:
    return await modify_recipe(validate_modify_recipe_params(args), context)


async def _execute_retrieve_cooked_recipes(
    args: dict[str, Any], context: ToolExecutionContext
) -> list[RecipeCard]:
    return await retrieve_cooked_recipes(validate_retrieve_cooked_recipes_params(args), context.user_context)


# =============================================================================
# Registry
# =============================================================================


TOOL_REGISTRY: MappingProxyType[str, ToolRegistration] = MappingProxyType(
    {
        "search_recipes": ToolRegistration(
            name="search_recipes",
            schema=SEARCH_RECIPES_SCHEMA,
            allowed_in_voice=True,
            execute=_execute_search_recipes,
            shape_result=shape_recipe_cards,
        ),
        "generate_custom_recipe": ToolRegistration(
            name="generate_custom_recipe",
            schema=GENERATE_CUSTOM_RECIPE_SCHEMA,
            allowed_in_voice=True,
            execute=_execute_generate_custom_recipe,
            shape_result=shape_custom_recipe,
        ),
        "modify_recipe": ToolRegistration(
            name="modify_recipe",
            schema=MODIFY_RECIPE_SCHEMA,
            allowed_in_voice=True,
            execute=_execute_modify_recipe,
            shape_result=shape_custom_recipe,
        ),
        "retrieve_cooked_recipes": ToolRegistration(
            name="retrieve_cooked_recipes",
            schema=RETRIEVE_COOKED_RECIPES_SCHEMA,
            allowed_in_voice=True,
            execute=_execute_retrieve_cooked_recipes,
            shape_result=shape_recipe_cards,
        ),
    }
)


def get_tool_registration(name: str) -> ToolRegistration | None:
    return TOOL_REGISTRY.get(name)


def get_registered_schemas(voice_only: bool = False) -> list[dict[str, Any]]:
    """
    Tool schemas in registry order.

    Returns copies, so callers cannot alter what other surfaces see.
    """
    return [
        copy.deepcopy(registration.schema)
        for registration in TOOL_REGISTRY.values()
        if registration.allowed_in_voice or not voice_only
    ]


def get_voice_eligible_names() -> list[str]:
    return [name for name, registration in TOOL_REGISTRY.items() if registration.allowed_in_voice]


async def execute_tool(name: str, raw_args: str | dict[str, Any], context: ToolExecutionContext) -> Any:
    """
    Validate and run a tool call.

    Raises:
        ToolValidationError: malformed JSON, non-object arguments, unknown
            tool, or arguments outside the tool's contract
        Exception: anything else is a server-side failure and propagates
    """
    registration = get_tool_registration(name)
    if registration is None:
        raise ToolValidationError(f"Unknown tool: {name}")

    args = parse_arguments(raw_args, name)

    logger.info(f"Executing tool {name} for user {context.user_context.user_id}")
    return await registration.execute(args, context)
