"""Mise - Tools the model can call, plus the shared ingredient helpers."""
