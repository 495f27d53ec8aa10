"""
Mise - LLM Client.

Wraps OpenAI (with Instructor for structured outputs).
All model calls go through here so every call reports token usage for
cost accounting.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import instructor
from openai import AsyncOpenAI
from pydantic import BaseModel

from mise.config import settings
from mise.llm.model_router import get_phase_config

logger = logging.getLogger(__name__)

# Type variable for generic structured output
T = TypeVar("T", bound=BaseModel)

# Singleton client instances
_openai: AsyncOpenAI | None = None
_instructor: instructor.AsyncInstructor | None = None


@dataclass
class LLMUsage:
    """Token usage of a single model call."""

    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0


@dataclass
class LLMResult(Generic[T]):
    """Structured output plus usage."""

    output: T
    usage: LLMUsage


@dataclass
class ChatResult:
    """Raw assistant message plus usage."""

    message: Any
    usage: LLMUsage


def get_openai_client() -> AsyncOpenAI:
    """
    Get the OpenAI client.

    Uses singleton pattern to reuse connection.
    """
    global _openai

    if _openai is None:
        _openai = AsyncOpenAI(api_key=settings.openai_api_key)

    return _openai


def get_client() -> instructor.AsyncInstructor:
    """Get the Instructor-wrapped OpenAI client."""
    global _instructor

    if _instructor is None:
        _instructor = instructor.from_openai(get_openai_client())

    return _instructor


def _usage(model: str, completion: Any, started: float) -> LLMUsage:
    usage = getattr(completion, "usage", None)
    return LLMUsage(
        model=getattr(completion, "model", None) or model,
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )


async def call_llm(
    *,
    response_model: type[T],
    system_prompt: str,
    user_prompt: str,
    phase: str = "recipe_generation",
    max_retries: int = 2,
) -> LLMResult[T]:
    """
    Make a structured LLM call with guaranteed schema compliance.

    Args:
        response_model: Pydantic model class for the response
        system_prompt: System message setting context
        user_prompt: User message with the actual request
        phase: Call phase, selects model/temperature
        max_retries: Number of retries if response doesn't match schema

    Returns:
        LLMResult with the validated model instance and token usage

    Raises:
        Provider errors propagate; callers decide how to surface them.
    """
    config = get_phase_config(phase)
    model = config["model"]
    started = time.perf_counter()

    try:
        output, completion = await get_client().chat.completions.create_with_completion(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_model=response_model,
            max_retries=max_retries,
            temperature=config["temperature"],
            store=False,
        )
    except Exception as e:
        logger.error(f"LLM call failed ({phase}, {model}): {e}")
        raise

    usage = _usage(model, completion, started)
    logger.debug(
        f"LLM {phase} → {response_model.__name__} "
        f"({usage.input_tokens} in / {usage.output_tokens} out, {usage.duration_ms}ms)"
    )
    return LLMResult(output=output, usage=usage)


async def call_llm_chat(
    messages: list[dict],
    *,
    tools: list[dict] | None = None,
    phase: str = "response_stream",
) -> ChatResult:
    """
    Plain chat completion, optionally offering tools.

    Returns the assistant message (content and/or tool_calls) with usage.
    """
    config = get_phase_config(phase)
    model = config["model"]
    started = time.perf_counter()

    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": config["temperature"],
        "store": False,
    }
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"

    try:
        completion = await get_openai_client().chat.completions.create(**kwargs)
    except Exception as e:
        logger.error(f"LLM chat call failed ({phase}, {model}): {e}")
        raise

    return ChatResult(message=completion.choices[0].message, usage=_usage(model, completion, started))
