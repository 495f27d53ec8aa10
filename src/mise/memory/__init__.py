"""Mise - Chat session persistence."""
