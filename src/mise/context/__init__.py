"""
Mise Context API.

- builders: Per-request user context and resumable cooking sessions
- conversation: Transcript compaction before model calls
"""
