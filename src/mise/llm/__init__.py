"""Mise - LLM provider adapter."""
