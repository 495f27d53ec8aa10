"""
Mise - Chat Turn Workflow.

One user message in, one assistant reply out:

1. ensure_session: validate or create the chat session
2. build_context + get_resumable_cooking_session (concurrently)
3. tool_decision call with every registered tool offered (voice: voice-eligible only)
4. monthly budget check when a generation is requested, then dispatch each
   requested tool through the registry
5. response_stream call on the normalized transcript (tool traffic folded)
6. count a successful generation, persist both turns, account for each model call

Provider errors propagate after being accounted for; tool failures do not,
they become tool messages the model can explain.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from mise.chat.prompts import build_system_prompt
from mise.context.builders import build_context, get_resumable_cooking_session
from mise.context.conversation import normalize_for_model, to_openai_messages
from mise.llm.client import LLMUsage, call_llm_chat
from mise.memory.sessions import ensure_session, save_message
from mise.observability.budget import (
    build_budget_exceeded_message,
    check_generation_budget,
    record_generation_usage,
)
from mise.observability.usage import UsageLogParams, log_usage
from mise.tools.registry import (
    ToolExecutionContext,
    execute_tool,
    get_registered_schemas,
    get_tool_registration,
)
from mise.tools.validators import ToolValidationError

logger = logging.getLogger(__name__)

TOOL_FAILURE_MESSAGE = "Tool execution failed"

# Tools counted against the monthly generation budget
BUDGETED_TOOLS = frozenset({"generate_custom_recipe"})


@dataclass
class TurnResult:
    """What the caller shows for one turn."""

    session_id: str
    message: str
    recipes: list[dict[str, Any]] = field(default_factory=list)
    custom_recipe: dict[str, Any] | None = None
    safety_flags: dict[str, Any] | None = None
    tool_names: list[str] = field(default_factory=list)

    def shaped_results(self) -> dict[str, Any]:
        """Tool results in the shape stored with the assistant message."""
        shaped: dict[str, Any] = {}
        if self.recipes:
            shaped["recipes"] = self.recipes
        if self.custom_recipe is not None:
            shaped["custom_recipe"] = self.custom_recipe
            shaped["safety_flags"] = self.safety_flags
        return shaped


# =============================================================================
# Helpers
# =============================================================================


async def _account(
    *,
    user_id: str,
    session_id: str,
    request_id: str,
    call_phase: str,
    usage: LLMUsage | None,
    status: str = "success",
    metadata: dict[str, Any] | None = None,
) -> None:
    await log_usage(
        UsageLogParams(
            user_id=user_id,
            session_id=session_id,
            request_id=request_id,
            call_phase=call_phase,
            attempt=0,
            status=status,
            function_name="chat",
            usage_type="text",
            model=usage.model if usage else None,
            input_tokens=usage.input_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
            duration_ms=usage.duration_ms if usage else None,
            metadata=metadata or {},
        )
    )


def _tool_call_dict(tool_call: Any) -> dict[str, Any]:
    return {
        "id": tool_call.id,
        "type": "function",
        "function": {
            "name": tool_call.function.name,
            "arguments": tool_call.function.arguments or "{}",
        },
    }


def _merge(result: TurnResult, shaped: dict[str, Any]) -> None:
    if "recipes" in shaped:
        result.recipes.extend(shaped["recipes"])
    if "custom_recipe" in shaped:
        result.custom_recipe = shaped["custom_recipe"]
        result.safety_flags = shaped.get("safety_flags")


async def _dispatch(tool_call: Any, context: ToolExecutionContext, result: TurnResult) -> str:
    """Run one tool call and return the tool message content."""
    name = tool_call.function.name
    try:
        raw = await execute_tool(name, tool_call.function.arguments, context)
    except ToolValidationError as e:
        logger.info(f"Rejected {name} call: {e}")
        return f"Invalid parameters: {e}"
    except Exception as e:
        logger.error(f"Tool {name} failed: {e}")
        return TOOL_FAILURE_MESSAGE

    shaped = get_tool_registration(name).shape_result(raw)
    _merge(result, shaped)
    return json.dumps(shaped, default=str)


# =============================================================================
# Turn
# =============================================================================


async def run_turn(
    user_id: str,
    message: str,
    session_id: str | None = None,
    request_id: str | None = None,
    voice: bool = False,
) -> TurnResult:
    """
    Handle one chat turn.

    With voice=True only voice-eligible tools are offered and the reply is
    shaped to be read aloud.

    Raises:
        SessionOwnershipError: session_id is not the user's
        RuntimeError: the session could not be validated or created
        Exception: provider errors from either model call
    """
    request_id = request_id or str(uuid.uuid4())

    session = await ensure_session(user_id, session_id, first_message=message)
    user_context, resumable = await asyncio.gather(
        build_context(user_id, session.session_id),
        get_resumable_cooking_session(user_id),
    )

    transcript: list[dict[str, Any]] = [
        {"role": "system", "content": build_system_prompt(user_context, resumable, voice=voice)},
        *({"role": m.role, "content": m.content} for m in user_context.conversation_history),
        {"role": "user", "content": message},
    ]
    account = {"user_id": user_id, "session_id": session.session_id, "request_id": request_id}

    # Tool decision
    try:
        decision = await call_llm_chat(
            transcript,
            tools=get_registered_schemas(voice_only=voice),
            phase="tool_decision",
        )
    except Exception:
        await _account(**account, call_phase="tool_decision", usage=None, status="error")
        raise

    tool_calls = list(decision.message.tool_calls or [])
    result = TurnResult(
        session_id=session.session_id,
        message=decision.message.content or "",
        tool_names=[tc.function.name for tc in tool_calls],
    )
    await _account(
        **account,
        call_phase="tool_decision",
        usage=decision.usage,
        metadata={"tool_names": result.tool_names, "has_tool_calls": bool(tool_calls)},
    )

    budgeted = BUDGETED_TOOLS.intersection(result.tool_names)
    if budgeted:
        budget = await check_generation_budget(user_id)
        if not budget.allowed:
            logger.info(f"Generation blocked for user {user_id}: {budget.used}/{budget.limit} used this month")
            result.message = build_budget_exceeded_message(user_context.language, budget.reset_at)
            tool_calls = []

    if tool_calls:
        context = ToolExecutionContext(
            user_context=user_context,
            session_id=session.session_id,
            request_id=request_id,
        )
        transcript.append(
            {
                "role": "assistant",
                "content": decision.message.content,
                "tool_calls": [_tool_call_dict(tc) for tc in tool_calls],
            }
        )
        for tool_call in tool_calls:
            content = await _dispatch(tool_call, context, result)
            transcript.append({"role": "tool", "tool_call_id": tool_call.id, "content": content})

        # Final reply
        messages = to_openai_messages(normalize_for_model(transcript))
        try:
            reply = await call_llm_chat(messages, phase="response_stream")
        except Exception:
            await _account(**account, call_phase="response_stream", usage=None, status="error")
            raise

        result.message = reply.message.content or ""
        await _account(
            **account,
            call_phase="response_stream",
            usage=reply.usage,
            metadata={"tool_names": result.tool_names},
        )

        generated = result.custom_recipe is not None and not (result.safety_flags or {}).get("error")
        if budgeted and generated:
            usage = await record_generation_usage(user_id, user_context.language)
            if usage.warning_message:
                result.message = f"{result.message}\n\n{usage.warning_message}"

    await save_message(session.session_id, "user", message)
    await save_message(session.session_id, "assistant", result.message, tool_calls=result.shaped_results() or None)

    logger.info(
        f"Turn complete for user {user_id} in session {session.session_id} "
        f"({len(tool_calls)} tool call(s))"
    )
    return result
