"""aiohttp application exposing the collaboration engine over HTTP."""
