"""Coordinator/worker wire protocol.

JSON text frames in a versioned envelope::

    {"version": 1, "type": "register", "workerId": "w1", "payload": {...}}

Frames without ``version`` are treated as version 1 so older workers keep working.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import orjson

from .exceptions import ProtocolError
from .models import now_ms

PROTOCOL_VERSION = 1


class MessageType(str, Enum):
    """Closed message set."""

    # worker -> coordinator
    REGISTER = "register"
    HEARTBEAT = "heartbeat"
    RESULT = "result"
    WORK_COMPLETE = "workComplete"
    # coordinator -> worker
    ACK = "ack"
    STOP = "stop"
    WORK = "work"


CLIENT_MESSAGES = frozenset({
    MessageType.REGISTER, MessageType.HEARTBEAT, MessageType.RESULT, MessageType.WORK_COMPLETE,
})
SERVER_MESSAGES = frozenset({MessageType.ACK, MessageType.STOP, MessageType.WORK})


@dataclass(slots=True, frozen=True)
class Message:
    type: MessageType
    worker_id: str | None = None
    payload: Any = None
    timestamp: int | None = None
    version: int = PROTOCOL_VERSION

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"version": self.version, "type": self.type.value}
        if self.worker_id is not None:
            out["workerId"] = self.worker_id
        if self.timestamp is not None:
            out["timestamp"] = self.timestamp
        if self.payload is not None:
            out["payload"] = self.payload
        return out


def encode(message: Message) -> str:
    """Serialize a message to a JSON text frame."""
    return orjson.dumps(message.to_dict()).decode("utf-8")


def decode(frame: str | bytes) -> Message:
    """Parse a JSON text frame. Raises ProtocolError on anything malformed."""
    try:
        raw = orjson.loads(frame)
    except orjson.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON frame: {e}", original_error=e) from e
    if not isinstance(raw, dict):
        raise ProtocolError("Frame must be a JSON object", context={"actual_type": type(raw).__name__})

    version = raw.get("version", PROTOCOL_VERSION)
    if version != PROTOCOL_VERSION:
        raise ProtocolError("Unsupported protocol version", context={"version": version})

    try:
        msg_type = MessageType(raw.get("type"))
    except ValueError as e:
        raise ProtocolError("Unknown message type", context={"type": raw.get("type")}, original_error=e) from e

    worker_id = raw.get("workerId")
    return Message(
        type=msg_type,
        worker_id=str(worker_id) if worker_id is not None else None,
        payload=raw.get("payload"),
        timestamp=raw.get("timestamp"),
        version=version,
    )


# --- Frame builders ---

def ack() -> Message:
    return Message(MessageType.ACK)


def stop() -> Message:
    return Message(MessageType.STOP)


def work(payload: dict[str, Any]) -> Message:
    return Message(MessageType.WORK, payload=payload)


def register(worker_id: str, max_concurrent: int, platform: str, version: str) -> Message:
    return Message(
        MessageType.REGISTER,
        worker_id=worker_id,
        timestamp=now_ms(),
        payload={"maxConcurrent": max_concurrent, "platform": platform, "version": version},
    )


def heartbeat(worker_id: str) -> Message:
    return Message(MessageType.HEARTBEAT, worker_id=worker_id, timestamp=now_ms())


def result(worker_id: str, payload: dict[str, Any]) -> Message:
    return Message(MessageType.RESULT, worker_id=worker_id, timestamp=now_ms(), payload=payload)


def work_complete(worker_id: str) -> Message:
    return Message(MessageType.WORK_COMPLETE, worker_id=worker_id, timestamp=now_ms())
