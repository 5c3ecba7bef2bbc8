"""Hub exceptions, one per failure the WebSocket protocol can report.

Every HubError carries the client-facing message in ``message`` and an
optional context dict for logging. The hub catches these at the
per-connection boundary and turns them into ``error`` / ``auth_error``
replies; they never reach other connections or the broadcast path.

Usage:
    from backend.websocket.exceptions import ExpiredCredential

    raise ExpiredCredential("Credential expired", context={"exp": 1700000000})
"""

from __future__ import annotations

from backend.common.exceptions import PulseBaseException


class HubError(PulseBaseException):
    """Base exception for all broadcast hub errors."""


class Unauthenticated(HubError):
    """The action requires an authenticated connection and none is present."""


class AuthenticationError(HubError):
    """Base for credential failures, reported to the client as ``auth_error``."""


class InvalidCredential(AuthenticationError):
    """Credential missing, malformed, or failing signature verification."""


class ExpiredCredential(AuthenticationError):
    """Credential was valid once but its expiry has passed."""


class PrincipalNotFound(AuthenticationError):
    """Credential verified but the identity it names does not exist."""


class MalformedMessage(HubError):
    """Envelope does not parse, or a payload fails shape validation."""


class UnknownMessageType(HubError):
    """Envelope parsed but its ``type`` is not part of the protocol."""


class DeliveryFailure(HubError):
    """Transport error while writing to one recipient's socket."""
