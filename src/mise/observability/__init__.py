"""Mise - Usage, cost and generation budget accounting."""
