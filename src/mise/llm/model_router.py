"""
Mise - Model Router.

Selects model and sampling settings per call phase. Call phases are the same
labels the usage logger records, so cost can be attributed per phase.

Phases:
- tool_decision: Model decides whether to call a tool → deterministic
- response_stream: User-facing reply after tools ran → warmer
- recipe_generation: Structured custom recipe → creative
- modification: Changes to an existing recipe → precise
"""

from typing import Literal, TypedDict

from mise.config import settings

CallPhase = Literal["tool_decision", "response_stream", "recipe_generation", "modification"]


class ModelConfig(TypedDict, total=False):
    """Configuration for model calls."""

    model: str
    temperature: float


# Lower = more deterministic, higher = more creative
PHASE_TEMPERATURE: dict[str, float] = {
    "tool_decision": 0.2,
    "response_stream": 0.6,
    "recipe_generation": 0.7,
    "modification": 0.4,
}

# Phases pinned to a specific model regardless of MISE_CHAT_MODEL
PHASE_MODEL: dict[str, str] = {
    "recipe_generation": "gpt-4o-mini",
}

DEFAULT_TEMPERATURE = 0.5


def get_phase_config(phase: CallPhase | str) -> ModelConfig:
    """
    Get model configuration for a call phase.

    Unknown phases fall back to the default chat model and temperature.
    """
    return {
        "model": PHASE_MODEL.get(phase, settings.mise_chat_model),
        "temperature": PHASE_TEMPERATURE.get(phase, DEFAULT_TEMPERATURE),
    }
