"""
WebSocket Protocol Definitions

Defines message schemas and validation for Chatline WebSocket communication.

@.architecture
Incoming: ws/handlers.py, ws/hub.py, ws/notifications.py --- {raw text/bytes frames from clients, outbound frame payloads}
Processing: decode_frame(), parse_inbound(), encode_frame(), Pydantic model validation --- {4 jobs: frame_decoding, message_parsing, schema_validation, envelope_encoding}
Outgoing: ws/handlers.py, ws/registry.py --- {Inbound models: ChatMessage, PingMessage, HeartbeatAckMessage; Outbound frames serialized as JSON text}

Client -> server:
    {"type": "chat", "input": "Hello", "threadId": "thread-123"}
    {"type": "ping"}
    {"type": "heartbeat_ack"}

Server -> client (every frame carries "type" and an ISO-8601 "timestamp"):
    connected{message}, chat_response{data}, pong{}, error{error}, heartbeat{}
    announcement{message}, notification{data}, system_message{message, severity}
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class MessageType(str, Enum):
    """Wire message type tags"""
    # Client -> server
    CHAT = "chat"
    PING = "ping"
    HEARTBEAT_ACK = "heartbeat_ack"

    # Server -> client
    CONNECTED = "connected"
    CHAT_RESPONSE = "chat_response"
    PONG = "pong"
    ERROR = "error"
    HEARTBEAT = "heartbeat"
    ANNOUNCEMENT = "announcement"
    NOTIFICATION = "notification"
    SYSTEM_MESSAGE = "system_message"


# Client-facing error strings
ERROR_INVALID_FORMAT = "Invalid message format"
ERROR_MISSING_FIELDS = "Missing required fields or not authenticated"
ERROR_CHAT_FAILED = "Failed to process chat message"
ERROR_UNKNOWN_TYPE = "Unknown message type"


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T12:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# Protocol errors
# =============================================================================

class ProtocolError(Exception):
    """Base class for per-message protocol failures."""

    client_message = ERROR_INVALID_FORMAT


class FrameDecodeError(ProtocolError):
    """Frame is not valid UTF-8 JSON."""

    client_message = ERROR_INVALID_FORMAT


class UnknownMessageTypeError(ProtocolError):
    """Frame decoded but its type tag is not recognised."""

    client_message = ERROR_UNKNOWN_TYPE


class InvalidMessageError(ProtocolError):
    """Recognised type tag with a payload that fails its shape check."""

    client_message = ERROR_MISSING_FIELDS


# =============================================================================
# Inbound messages
# =============================================================================

class ChatMessage(BaseModel):
    """
    Chat request routed to the response generator.

    Example:
        {"type": "chat", "input": "Hello, AI!", "threadId": "thread-123"}
    """
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["chat"] = "chat"
    input: str = Field(min_length=1)
    thread_id: str = Field(alias="threadId", min_length=1)

    @field_validator("thread_id", mode="before")
    @classmethod
    def coerce_thread_id(cls, v: Any) -> Any:
        # Numeric thread ids are common in browser clients
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class PingMessage(BaseModel):
    """Application-level ping, answered with pong."""
    type: Literal["ping"] = "ping"


class HeartbeatAckMessage(BaseModel):
    """Acknowledgment of a server heartbeat."""
    type: Literal["heartbeat_ack"] = "heartbeat_ack"


InboundMessage = Union[ChatMessage, PingMessage, HeartbeatAckMessage]

INBOUND_MODELS: Dict[str, Any] = {
    MessageType.CHAT.value: ChatMessage,
    MessageType.PING.value: PingMessage,
    MessageType.HEARTBEAT_ACK.value: HeartbeatAckMessage,
}


def decode_frame(raw: Union[str, bytes]) -> Any:
    """
    Decode raw frame data as JSON.

    Raises:
        FrameDecodeError: If the data is not UTF-8 JSON
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        return json.loads(raw)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise FrameDecodeError(str(e)) from e


def parse_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """
    Decode and validate an inbound frame.

    Args:
        raw: Text or binary frame payload

    Returns:
        Parsed inbound message model

    Raises:
        FrameDecodeError: Payload is not JSON
        UnknownMessageTypeError: Type tag missing or not recognised
        InvalidMessageError: Payload fails the shape check for its type
    """
    payload = decode_frame(raw)

    message_type = payload.get("type") if isinstance(payload, dict) else None
    model = INBOUND_MODELS.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        raise UnknownMessageTypeError(f"Unknown message type: {message_type!r}")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidMessageError(str(e)) from e


# =============================================================================
# Outbound frames
# =============================================================================

class OutboundFrame(BaseModel):
    """
    Envelope shared by every server -> client frame.

    Extra keyword fields are kept, so ad-hoc frames can be built directly:
        OutboundFrame(type="custom", value=1)
    """
    model_config = ConfigDict(extra="allow")

    type: str
    timestamp: str = Field(default_factory=utc_timestamp)


class ConnectedFrame(OutboundFrame):
    type: Literal["connected"] = "connected"
    message: str


class ChatResponseFrame(OutboundFrame):
    type: Literal["chat_response"] = "chat_response"
    data: Any = None


class PongFrame(OutboundFrame):
    type: Literal["pong"] = "pong"


class ErrorFrame(OutboundFrame):
    type: Literal["error"] = "error"
    error: str


class HeartbeatFrame(OutboundFrame):
    """Liveness check. Clients answer with heartbeat_ack."""
    type: Literal["heartbeat"] = "heartbeat"


class AnnouncementFrame(OutboundFrame):
    type: Literal["announcement"] = "announcement"
    message: str


class NotificationFrame(OutboundFrame):
    type: Literal["notification"] = "notification"
    data: Any = None


class SystemMessageFrame(OutboundFrame):
    type: Literal["system_message"] = "system_message"
    message: str
    severity: Literal["info", "warning", "error"] = "info"


def encode_frame(frame: OutboundFrame) -> str:
    """Serialize a frame to JSON text (type and timestamp first, then payload)."""
    return frame.model_dump_json()
