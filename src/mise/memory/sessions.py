"""
Mise - Chat Session Manager.

Validates or creates the chat session for a turn, titles new sessions from
their first message, and persists turns to user_chat_messages.

A session id that does not exist and one owned by someone else produce the
same SessionOwnershipError, so callers cannot discover other users' ids.
"""

import logging
from dataclasses import dataclass
from typing import Any

from mise.db import get_client, run_query

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
# Only cut at a word boundary if it keeps at least this much of the title
TITLE_MIN_BREAK = 20
DEFAULT_TITLE = "New chat"


class SessionOwnershipError(Exception):
    """Session not found or not owned by the requesting user."""

    status_code = 404

    def __init__(self, message: str = "Session not found or not owned by user"):
        super().__init__(message)


@dataclass(frozen=True)
class SessionResult:
    session_id: str
    created: bool


def generate_session_title(message: str) -> str:
    """
    Title a session from its first message.

    Examples:
        generate_session_title("  quick   pasta  ") -> "quick pasta"
        generate_session_title(<long text>) -> first ~50 chars cut at a word + "..."
    """
    cleaned = " ".join(message.split())

    if len(cleaned) <= TITLE_MAX_LENGTH:
        return cleaned

    truncated = cleaned[:TITLE_MAX_LENGTH]
    last_space = truncated.rfind(" ")

    if last_space > TITLE_MIN_BREAK:
        return truncated[:last_space] + "..."
    return truncated + "..."


async def ensure_session(
    user_id: str,
    session_id: str | None = None,
    first_message: str | None = None,
) -> SessionResult:
    """
    Return a session the user owns, creating one if none was given.

    Raises:
        SessionOwnershipError: session_id is unknown or belongs to another user
        RuntimeError: the session store could not be read or written
    """
    client = get_client()

    if session_id:
        try:
            response = await run_query(
                client.table("user_chat_sessions")
                .select("id")
                .eq("id", session_id)
                .eq("user_id", user_id)
                .maybe_single()
            )
        except Exception as e:
            logger.error(f"Failed to validate session {session_id} for user {user_id}: {e}")
            raise RuntimeError("Failed to validate session") from e

        if response is None or not response.data:
            raise SessionOwnershipError()

        return SessionResult(session_id=session_id, created=False)

    title = generate_session_title(first_message or "") or DEFAULT_TITLE

    try:
        response = await run_query(
            client.table("user_chat_sessions").insert({"user_id": user_id, "title": title})
        )
    except Exception as e:
        logger.error(f"Failed to create chat session for user {user_id}: {e}")
        raise RuntimeError(f"Failed to create chat session: {e}") from e

    rows = response.data or []
    if not rows or not rows[0].get("id"):
        raise RuntimeError("Failed to create chat session: no id returned")

    new_id = rows[0]["id"]
    logger.info(f"Created chat session {new_id} for user {user_id}")
    return SessionResult(session_id=new_id, created=True)


async def save_message(
    session_id: str,
    role: str,
    content: str,
    tool_calls: dict[str, Any] | None = None,
) -> bool:
    """
    Persist one turn.

    Returns:
        True if saved, False otherwise (failures are logged, not raised)
    """
    row: dict[str, Any] = {"session_id": session_id, "role": role, "content": content}
    if tool_calls:
        row["tool_calls"] = tool_calls

    try:
        await run_query(get_client().table("user_chat_messages").insert(row))
        return True
    except Exception as e:
        logger.error(f"Failed to save {role} message to session {session_id}: {e}")
        return False
