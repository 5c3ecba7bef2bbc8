"""Base exception for Pulse Trading Hub.

Modules raise subclasses of PulseBaseException instead of generic ones.
The FastAPI exception handler in main.py catches PulseBaseException on
HTTP routes and returns a structured JSON error response; the WebSocket
hub converts its own subclasses into error replies on the connection.
"""

from __future__ import annotations

_SECRET_WORDS = frozenset({"secret", "password", "token", "credential", "authorization"})


class PulseBaseException(Exception):
    """Base exception for all Pulse Trading Hub errors.

    Args:
        message: Human-readable error description.
        context: Optional dict of structured data for logging/debugging.
    """

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            safe_context = {
                k: "[REDACTED]" if _is_secret_key(k) else v for k, v in self.context.items()
            }
            return f"{self.message} | context={safe_context}"
        return self.message


def _is_secret_key(key: str) -> bool:
    """Check if a dict key name suggests it contains secret data."""
    key_lower = key.lower()
    return any(word in key_lower for word in _SECRET_WORDS)
