"""External adapters for the Huddle collaboration engine.

This package contains all external dependencies (SQLite, aiohttp, httpx,
etc.) and provides implementations of the core port interfaces.

Adapter Organization:

- store/: Adapters for project and task persistence (in-memory, SQLite)
- users/: Adapters for resolving user ids (in-memory, remote HTTP service)
- realtime/: Live connection registry and the WebSocket transport
- http/: aiohttp application exposing the driving ports over HTTP
"""
