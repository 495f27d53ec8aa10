"""
Tests for the chat turn workflow.

call_llm_chat is mocked; everything else runs over FakeSupabase.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from mise.chat import run_turn
from mise.chat.prompts import build_system_prompt
from mise.context.builders import ResumableSession, UserContext
from mise.llm.client import ChatResult, LLMResult, LLMUsage
from mise.memory.sessions import SessionOwnershipError
from mise.models.recipes import GeneratedRecipe, RecipeIngredient
from mise.observability.budget import INCREMENT_RPC, month_start
from mise.tools.registry import get_voice_eligible_names

USER_ID = "11111111-1111-1111-1111-111111111111"


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


def _reply(content: str | None, tool_calls: list | None = None) -> ChatResult:
    """Build a mock assistant reply."""
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return ChatResult(message=message, usage=LLMUsage(model="gpt-4o-mini", input_tokens=100, output_tokens=20))


def _tool_call(call_id: str, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _seed_recipe(db) -> None:
    db.seed(
        "recipes",
        [
            {
                "id": "r1",
                "name_en": "Creamy Pasta",
                "name_es": "Pasta Cremosa",
                "total_time": 20,
                "difficulty": "easy",
                "portions": 2,
                "is_published": True,
                "created_at": "2026-01-01T00:00:00+00:00",
                "recipe_to_tag": [],
            }
        ],
    )


class TestRunTurn:
    def test_plain_reply_is_persisted(self, fake_db):
        chat = AsyncMock(return_value=_reply("Hello! What are you in the mood for?"))

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            result = _run(run_turn(USER_ID, "hi there"))

        assert result.message == "Hello! What are you in the mood for?"
        assert chat.await_count == 1
        assert chat.await_args.kwargs["phase"] == "tool_decision"
        assert len(chat.await_args.kwargs["tools"]) == 4

        session = fake_db.tables["user_chat_sessions"][0]
        assert session["id"] == result.session_id
        assert session["title"] == "hi there"

        messages = fake_db.tables["user_chat_messages"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "hi there"),
            ("assistant", "Hello! What are you in the mood for?"),
        ]
        assert "tool_calls" not in messages[1]

        usage = fake_db.tables["ai_usage_logs"]
        assert [row["call_phase"] for row in usage] == ["tool_decision"]
        assert usage[0]["metadata"] == {"tool_names": [], "has_tool_calls": False}

    def test_tool_results_are_folded_for_final_reply(self, fake_db):
        _seed_recipe(fake_db)
        chat = AsyncMock(
            side_effect=[
                _reply(None, [_tool_call("call_1", "search_recipes", '{"query": "pasta"}')]),
                _reply("Try the Creamy Pasta!"),
            ]
        )

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            result = _run(run_turn(USER_ID, "pasta ideas", request_id="req-9"))

        assert result.message == "Try the Creamy Pasta!"
        assert [r["recipe_id"] for r in result.recipes] == ["r1"]
        assert result.tool_names == ["search_recipes"]

        final_messages = chat.await_args_list[1].args[0]
        assert chat.await_args_list[1].kwargs["phase"] == "response_stream"
        assert {m["role"] for m in final_messages} <= {"system", "user", "assistant"}
        assert final_messages[-1] == {
            "role": "assistant",
            "content": "[Tool result]: Found 1 recipe(s): Creamy Pasta (20 min)",
        }

        assistant_row = fake_db.tables["user_chat_messages"][1]
        assert assistant_row["tool_calls"]["recipes"][0]["name"] == "Creamy Pasta"

        usage = fake_db.tables["ai_usage_logs"]
        assert sorted(row["call_phase"] for row in usage) == ["response_stream", "tool_decision"]
        assert all(row["request_id"] == "req-9" for row in usage)

    def test_invalid_tool_arguments_become_tool_message(self, fake_db):
        chat = AsyncMock(
            side_effect=[
                _reply(None, [_tool_call("call_1", "search_recipes", '{"limit": 5}')]),
                _reply("Could you tell me what you'd like to cook?"),
            ]
        )

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            result = _run(run_turn(USER_ID, "something"))

        final_messages = chat.await_args_list[1].args[0]
        assert final_messages[-1]["content"] == (
            "[Tool result]: Invalid parameters: search_recipes requires a query or at least one filter"
        )
        assert result.recipes == []

    def test_tool_failure_becomes_generic_message(self, fake_db):
        chat = AsyncMock(
            side_effect=[
                _reply(None, [_tool_call("call_1", "generate_custom_recipe", '{"ingredients": ["rice"]}')]),
                _reply("Sorry, that didn't work."),
            ]
        )

        with (
            patch("mise.chat.workflow.call_llm_chat", new=chat),
            patch("mise.tools.generate_recipe.call_llm", new=AsyncMock(side_effect=RuntimeError("boom"))),
        ):
            result = _run(run_turn(USER_ID, "make me something with rice"))

        final_messages = chat.await_args_list[1].args[0]
        assert final_messages[-1]["content"] == "[Tool result]: Tool execution failed"
        assert result.custom_recipe is None

    def test_existing_session_history_is_sent(self, fake_db):
        fake_db.seed("user_chat_sessions", [{"id": "s1", "user_id": USER_ID}])
        fake_db.seed(
            "user_chat_messages",
            [
                {"session_id": "s1", "role": "user", "content": "earlier question", "created_at": "2026-01-01T00:00:01+00:00"},
                {"session_id": "s1", "role": "assistant", "content": "earlier answer", "created_at": "2026-01-01T00:00:02+00:00"},
            ],
        )
        chat = AsyncMock(return_value=_reply("Sure."))

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            result = _run(run_turn(USER_ID, "and now?", session_id="s1"))

        sent = chat.await_args.args[0]
        assert [m["content"] for m in sent[1:4]] == ["earlier question", "earlier answer", "and now?"]
        assert result.session_id == "s1"

    def test_foreign_session_is_rejected_before_any_model_call(self, fake_db):
        fake_db.seed("user_chat_sessions", [{"id": "s1", "user_id": "someone-else"}])
        chat = AsyncMock()

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            with pytest.raises(SessionOwnershipError):
                _run(run_turn(USER_ID, "hi", session_id="s1"))

        chat.assert_not_awaited()

    def test_provider_failure_is_accounted_and_raised(self, fake_db):
        chat = AsyncMock(side_effect=RuntimeError("upstream down"))

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            with pytest.raises(RuntimeError, match="upstream down"):
                _run(run_turn(USER_ID, "hi"))

        usage = fake_db.tables["ai_usage_logs"]
        assert usage[0]["status"] == "error"
        assert usage[0]["call_phase"] == "tool_decision"

    def test_generation_blocked_when_budget_spent(self, fake_db):
        fake_db.seed(
            "ai_monthly_generation_usage",
            [{"user_id": USER_ID, "month_start": month_start().isoformat(), "generation_count": 120}],
        )
        chat = AsyncMock(return_value=_reply(None, [_tool_call("call_1", "generate_custom_recipe", '{"ingredients": ["rice"]}')]))

        with (
            patch("mise.chat.workflow.call_llm_chat", new=chat),
            patch("mise.tools.generate_recipe.call_llm", new=AsyncMock()) as call_llm,
        ):
            result = _run(run_turn(USER_ID, "make me something with rice"))

        call_llm.assert_not_awaited()
        assert chat.await_count == 1
        assert result.message.startswith("You've reached your monthly recipe creation limit.")
        assert result.custom_recipe is None
        assert fake_db.tables["user_chat_messages"][1]["content"] == result.message

    def test_generation_is_counted_with_warning(self, reference_db):
        reference_db.rpc_results[INCREMENT_RPC] = [
            {"allowed": True, "used": 96, "was_80_warning_sent": False, "was_90_warning_sent": False}
        ]
        recipe = GeneratedRecipe(
            suggested_name="Fried Rice",
            ingredients=[RecipeIngredient(name="rice", quantity=2, unit="cup")],
            total_time=20,
        )
        chat = AsyncMock(
            side_effect=[
                _reply(None, [_tool_call("call_1", "generate_custom_recipe", '{"ingredients": ["rice"]}')]),
                _reply("Here is your fried rice."),
            ]
        )
        generated = LLMResult(output=recipe, usage=LLMUsage(model="gpt-4o-mini", input_tokens=400, output_tokens=300))

        with (
            patch("mise.chat.workflow.call_llm_chat", new=chat),
            patch("mise.tools.generate_recipe.call_llm", new=AsyncMock(return_value=generated)),
        ):
            result = _run(run_turn(USER_ID, "make me something with rice"))

        assert result.custom_recipe["suggested_name"] == "Fried Rice"
        assert result.message.startswith("Here is your fried rice.\n\nHeads up: you've used 96 of 120")
        assert [name for name, _ in reference_db.rpc_calls] == [INCREMENT_RPC]

    def test_search_is_not_counted(self, fake_db):
        _seed_recipe(fake_db)
        chat = AsyncMock(
            side_effect=[
                _reply(None, [_tool_call("call_1", "search_recipes", '{"query": "pasta"}')]),
                _reply("Try the Creamy Pasta!"),
            ]
        )

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            _run(run_turn(USER_ID, "pasta ideas"))

        assert fake_db.rpc_calls == []
        assert "ai_monthly_generation_usage" not in fake_db.tables

    def test_voice_turn(self, fake_db):
        chat = AsyncMock(return_value=_reply("Hola."))

        with patch("mise.chat.workflow.call_llm_chat", new=chat):
            _run(run_turn(USER_ID, "hola", voice=True))

        sent = chat.await_args.args[0]
        assert "## Voice" in sent[0]["content"]
        offered = {tool["function"]["name"] for tool in chat.await_args.kwargs["tools"]}
        assert offered == set(get_voice_eligible_names())


class TestSystemPrompt:
    def test_user_context_block(self):
        context = UserContext(
            user_id=USER_ID,
            language="es",
            measurement_system="metric",
            dietary_restrictions=["shellfish"],
            custom_allergies=["kiwi"],
            household_size=3,
        )
        prompt = build_system_prompt(context)

        assert "<language>Spanish</language>" in prompt
        assert "<dietary_restrictions>shellfish, kiwi</dietary_restrictions>" in prompt
        assert "<household_size>3</household_size>" in prompt
        assert "<skill_level>" not in prompt
        assert "## Voice" not in prompt

    def test_resumable_session_section(self):
        from datetime import datetime, timedelta, timezone

        session = ResumableSession(
            session_id="cook-1",
            recipe_id="r1",
            recipe_name="Paella",
            recipe_kind="recipe",
            current_step=3,
            total_steps=8,
            last_active_at=datetime.now(timezone.utc) - timedelta(hours=2, minutes=5),
        )
        prompt = build_system_prompt(UserContext(user_id=USER_ID), session, voice=True)

        assert 'cooking "Paella" 2 hour(s) ago' in prompt
        assert "step 3 of 8" in prompt
        assert "## Voice" in prompt
