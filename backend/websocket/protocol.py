"""Wire protocol for the /ws endpoint.

Every frame is one JSON object ``{"type": str, "payload": object}``.
Inbound frames are parsed in three steps, each with its own failure:

    parse_envelope()      -> MalformedMessage("Invalid message format")
    parse_message_type()  -> UnknownMessageType("Unknown message type")
    parse_topics() / parse_credential() -> per-payload validation errors

Outbound frames are built by the helpers at the bottom of this module
so the hub never assembles dicts by hand. Timestamps are integer
milliseconds since the Unix epoch.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, StrictStr, ValidationError, field_validator

from backend.websocket.exceptions import (
    InvalidCredential,
    MalformedMessage,
    UnknownMessageType,
)

INVALID_FORMAT = "Invalid message format"
UNKNOWN_TYPE = "Unknown message type"
NOT_AUTHENTICATED = "Not authenticated"
TOPICS_NOT_STRINGS = "Topics must be an array of strings"


class MessageType(StrEnum):
    """Client -> server message types. The hub maps each to a handler."""

    AUTH = "auth"
    SUBSCRIBE_TOPIC = "subscribe_topic"
    UNSUBSCRIBE_TOPIC = "unsubscribe_topic"
    SUBSCRIBE_PORTFOLIO = "subscribe_portfolio"
    UNSUBSCRIBE_PORTFOLIO = "unsubscribe_portfolio"
    PING = "ping"


class ServerMessageType(StrEnum):
    """Server -> client message types: replies first, then pushes."""

    AUTH_SUCCESS = "auth_success"
    AUTH_ERROR = "auth_error"
    SUBSCRIBE_TOPIC_SUCCESS = "subscribe_topic_success"
    UNSUBSCRIBE_TOPIC_SUCCESS = "unsubscribe_topic_success"
    SUBSCRIBE_PORTFOLIO_SUCCESS = "subscribe_portfolio_success"
    UNSUBSCRIBE_PORTFOLIO_SUCCESS = "unsubscribe_portfolio_success"
    PONG = "pong"
    ERROR = "error"

    TOPIC_UPDATE = "topic_update"
    SIGNAL_BROADCAST = "signal_broadcast"
    IDENTITY_UPDATE = "identity_update"
    TRADE_NOTIFICATION = "trade_notification"


# ─── Inbound models ───


class Envelope(BaseModel):
    """Outer shape shared by every client frame. Unknown keys are ignored."""

    type: StrictStr
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _null_payload_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class AuthPayload(BaseModel):
    # Older clients send the credential as "token"
    credential: StrictStr | None = Field(
        default=None,
        validation_alias=AliasChoices("credential", "token"),
    )


class TopicsPayload(BaseModel):
    topics: list[StrictStr]


def now_ms() -> int:
    """Current server time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_envelope(raw: str | bytes) -> Envelope:
    """Parse a raw frame into an Envelope.

    Raises:
        MalformedMessage: Not JSON, not an object, or missing a string type.
    """
    try:
        return Envelope.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedMessage(INVALID_FORMAT, context={"errors": exc.error_count()}) from exc


def parse_message_type(envelope: Envelope) -> MessageType:
    """Resolve the envelope's declared type against the closed set.

    Raises:
        UnknownMessageType: The type is not part of the protocol.
    """
    try:
        return MessageType(envelope.type)
    except ValueError as exc:
        raise UnknownMessageType(UNKNOWN_TYPE, context={"type": envelope.type[:64]}) from exc


def parse_topics(payload: dict[str, Any]) -> list[str]:
    """Extract the topic list from a subscribe/unsubscribe payload.

    Raises:
        MalformedMessage: ``topics`` missing or not a list of strings.
    """
    try:
        return TopicsPayload.model_validate(payload).topics
    except ValidationError as exc:
        raise MalformedMessage(TOPICS_NOT_STRINGS) from exc


def parse_credential(payload: dict[str, Any]) -> str:
    """Extract a non-empty credential string from an auth payload.

    Raises:
        InvalidCredential: Credential missing, empty, or not a string.
    """
    try:
        credential = AuthPayload.model_validate(payload).credential
    except ValidationError as exc:
        raise InvalidCredential("Credential required") from exc
    if not credential:
        raise InvalidCredential("Credential required")
    return credential


# ─── Outbound builders ───


def server_message(message_type: ServerMessageType, **payload: Any) -> dict[str, Any]:
    return {"type": message_type.value, "payload": payload}


def error_message(message: str) -> dict[str, Any]:
    return server_message(ServerMessageType.ERROR, message=message)


def auth_error_message(message: str) -> dict[str, Any]:
    return server_message(ServerMessageType.AUTH_ERROR, message=message)


def pong_message() -> dict[str, Any]:
    return server_message(ServerMessageType.PONG, timestamp=now_ms())


def topic_update_message(topic: str, data: Any) -> dict[str, Any]:
    return server_message(
        ServerMessageType.TOPIC_UPDATE, topic=topic, data=data, timestamp=now_ms()
    )


def push_message(message_type: ServerMessageType, data: Any) -> dict[str, Any]:
    """Topic-less producer push (signal, identity update, trade notification)."""
    return server_message(message_type, data=data, timestamp=now_ms())
