"""
Mise - Decision and safety core of a conversational cooking assistant.

Layers:
- Reference: Cached ingredient aliases, allergen groups, food-safety rules
- Safety: Allergen and cooking-temperature validation
- Context: Per-request user context and transcript compaction
- Tools: Registry shared by the text and voice surfaces
"""

__version__ = "1.0.0"
