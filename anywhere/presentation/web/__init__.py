"""
Web presentation layer for the instance orchestrator.

Architectural Intent:
- Exposes the REST API consumed by the relay front end and operators
- Uses Python stdlib only (http.server + asyncio)
- Complements the CLI and TUI interfaces
"""
