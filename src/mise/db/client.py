"""
Mise - Supabase Client.

Low-level database access. All queries go through here.

The supabase client is synchronous; run_query() moves each execute() onto a
worker thread so concurrent reads inside a request actually overlap.
"""

import asyncio
from typing import Any

from supabase import Client, create_client

from mise.config import settings

# Singleton client instances
_client: Client | None = None
_service_client: Client | None = None


def get_client() -> Client:
    """
    Get the Supabase client.

    Uses singleton pattern to reuse connection.
    """
    global _client

    if _client is None:
        _client = create_client(
            settings.supabase_url,
            settings.supabase_anon_key,
        )

    return _client


def get_service_client() -> Client:
    """
    Get the service-role Supabase client.

    Used for writes that bypass row-level security (usage accounting).
    """
    global _service_client

    if _service_client is None:
        _service_client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )

    return _service_client


async def run_query(query: Any) -> Any:
    """
    Execute a built query without blocking the event loop.

    Returns the raw response. maybe_single() queries may return None
    instead of a response when no row matches.
    """
    return await asyncio.to_thread(query.execute)
