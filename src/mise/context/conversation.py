"""
Mise Context API - Conversation Normalization.

Rewrites a transcript that contains tool calls into one the model can be
sent again: only system, user and assistant messages, with every tool
result folded into the assistant turn that requested it as a one-line
summary.

Raw tool JSON never goes back to the model. This keeps the resent
transcript roughly constant in size per turn and stops the model from
copying internal result shapes into its replies.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

# Tool output at or under this size is passed through unchanged
PASSTHROUGH_LIMIT = 300
MAX_LISTED_RECIPES = 5


# =============================================================================
# Messages
# =============================================================================


class ToolCallFunction(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str


ChatMessage = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]
ModelMessage = Union[SystemMessage, UserMessage, AssistantMessage]

_MESSAGE = TypeAdapter(ChatMessage)


def parse_transcript(raw: list[dict | BaseModel]) -> list[ChatMessage]:
    """Validate raw message dicts; unknown roles raise a ValidationError."""
    return [m if isinstance(m, BaseModel) else _MESSAGE.validate_python(m) for m in raw]


def to_openai_messages(messages: list[BaseModel]) -> list[dict]:
    """Dump messages in the provider's chat format."""
    return [m.model_dump(exclude_none=True) for m in messages]


# =============================================================================
# Tool Result Summaries
# =============================================================================


def _summarize_recipe_list(data: Any) -> str | None:
    recipes = data.get("recipes") if isinstance(data, dict) else data
    if not isinstance(recipes, list):
        return None
    if recipes and not all(isinstance(r, dict) and r.get("name") for r in recipes):
        return None
    if not recipes and not isinstance(data, dict):
        return None

    names = []
    for recipe in recipes[:MAX_LISTED_RECIPES]:
        minutes = recipe.get("total_time") or recipe.get("totalTime")
        names.append(f"{recipe['name']} ({minutes} min)" if minutes else recipe["name"])

    summary = f"Found {len(recipes)} recipe(s)"
    if names:
        summary += f": {', '.join(names)}"
    if len(recipes) > MAX_LISTED_RECIPES:
        summary += f" and {len(recipes) - MAX_LISTED_RECIPES} more"
    return summary


def _summarize_custom_recipe(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    recipe = data.get("custom_recipe") or data.get("recipe")
    if not isinstance(recipe, dict):
        return None
    name = recipe.get("suggested_name") or recipe.get("suggestedName")
    if not name:
        return None

    summary = f'Custom recipe generated: "{name}"'

    flags = data.get("safety_flags") or data.get("safetyFlags")
    if not isinstance(flags, dict):
        return summary
    warning = flags.get("allergen_warning") or flags.get("allergenWarning")
    if warning:
        summary += f" (safety: {warning})"
    return summary


# Typed summarizers, tried in order
TOOL_SUMMARIZERS = (_summarize_recipe_list, _summarize_custom_recipe)


def summarize_tool_content(content: str) -> str:
    """
    Compact one tool result for the model.

    Known result shapes get a typed summary. Anything else up to
    PASSTHROUGH_LIMIT characters passes through unchanged; larger JSON is
    reduced to its shape and larger text is truncated.
    """
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        data = None

    if data is not None:
        for summarize in TOOL_SUMMARIZERS:
            summary = summarize(data)
            if summary:
                return summary

    if len(content) <= PASSTHROUGH_LIMIT:
        return content

    if isinstance(data, dict):
        return f"Tool returned object with keys: {', '.join(data)}"
    if isinstance(data, list):
        return f"Tool returned {len(data)} item(s)"
    return content[: PASSTHROUGH_LIMIT - 3] + "..."


def _fold(content: str | None, results: list[ToolMessage]) -> AssistantMessage:
    lines = [content] if content else []
    lines.extend(f"[Tool result]: {summarize_tool_content(r.content)}" for r in results)
    return AssistantMessage(content="\n".join(lines))


# =============================================================================
# Normalization
# =============================================================================


def normalize_for_model(transcript: list[dict | BaseModel]) -> list[ModelMessage]:
    """
    Fold tool traffic into assistant messages.

    - An assistant message with tool_calls absorbs every tool message that
      immediately follows it; its tool_calls record is dropped.
    - A run of tool messages with no requesting assistant turn becomes one
      synthetic assistant message.
    - System, user and plain assistant messages pass through.
    """
    messages = parse_transcript(transcript)
    normalized: list[ModelMessage] = []

    i = 0
    while i < len(messages):
        message = messages[i]

        match message:
            case AssistantMessage(tool_calls=[_, *_]) | ToolMessage():
                start = i + 1 if isinstance(message, AssistantMessage) else i
                end = start
                while end < len(messages) and isinstance(messages[end], ToolMessage):
                    end += 1
                content = message.content if isinstance(message, AssistantMessage) else None
                normalized.append(_fold(content, messages[start:end]))
                i = end
                continue
            case AssistantMessage():
                normalized.append(AssistantMessage(content=message.content))
            case SystemMessage() | UserMessage():
                normalized.append(message)
            case _:
                raise TypeError(f"Unsupported message type: {type(message).__name__}")

        i += 1

    return normalized
