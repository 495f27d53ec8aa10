"""Mise - Allergen and food-safety validation."""
