"""Mise - Database access."""

from mise.db.client import get_client, get_service_client, run_query

__all__ = ["get_client", "get_service_client", "run_query"]
