"""
Mise - Chat turn workflow.

Usage:
    from mise.chat import run_turn

    result = await run_turn(user_id, "something quick with chicken")
"""

from mise.chat.workflow import TurnResult, run_turn

__all__ = ["TurnResult", "run_turn"]
