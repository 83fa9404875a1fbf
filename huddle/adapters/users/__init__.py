"""User directory adapters.

Implementations:
- In-memory (optionally seeded from a JSON file)
- HTTP (remote user service, via httpx)
"""
