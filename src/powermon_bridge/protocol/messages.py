"""Outbound message definitions.

Every output line is exactly one of four JSON objects, tagged by ``type``::

    {"type":"event","event":<name>[,...fields]}
    {"type":"result","id":<id>,"success":<bool>,"code":<int>[,"data":<json>]}
    {"type":"error","id":<id>,"message":<string>}
    {"type":"fatal","message":<string>}

Events are uncorrelated notifications; results and errors answer exactly
one command; fatal precedes an abnormal exit.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class EventName(str, Enum):
    """Names of uncorrelated events."""

    READY = "ready"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MONITOR = "monitor"


class Message(BaseModel):
    """Base class for all outbound messages."""

    model_config = ConfigDict(frozen=True)

    type: str

    def to_dict(self) -> dict[str, Any]:
        # exclude_unset keeps optional fields off the wire unless given,
        # which is what separates "no data" from "data": null
        return self.model_dump(mode="json", exclude_unset=True) | {"type": self.type}

    def encode(self) -> str:
        """Serialize to a single JSON line (without the trailing newline)."""
        body = self.to_dict()
        ordered = {"type": body.pop("type"), **body}
        return json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)


class EventMessage(Message):
    """Uncorrelated event; extra fields are emitted next to ``event``."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Literal["event"] = "event"
    event: str

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @property
    def payload(self) -> dict[str, Any]:
        """Fields emitted next to ``event``."""
        return dict(self.model_extra or {})

    @classmethod
    def create(cls, name: str | EventName, **fields: Any) -> EventMessage:
        return cls(event=name.value if isinstance(name, EventName) else name, **fields)

    @classmethod
    def ready(cls) -> EventMessage:
        return cls.create(EventName.READY)

    @classmethod
    def connected(cls) -> EventMessage:
        return cls.create(EventName.CONNECTED)

    @classmethod
    def disconnected(cls, reason: int) -> EventMessage:
        return cls.create(EventName.DISCONNECTED, reason=int(reason))

    @classmethod
    def monitor(cls, data: dict[str, Any]) -> EventMessage:
        return cls.create(EventName.MONITOR, data=data)


class ResultMessage(Message):
    """Terminal reply to a command that reached the SDK (or needed no SDK)."""

    type: Literal["result"] = "result"
    id: str
    success: bool
    code: int
    data: Any = None

    @classmethod
    def ok(cls, command_id: str, data: Any = None, *, code: int = 0) -> ResultMessage:
        if data is None:
            return cls(id=command_id, success=True, code=code)
        return cls(id=command_id, success=True, code=code, data=data)

    @classmethod
    def failed(cls, command_id: str, code: int) -> ResultMessage:
        return cls(id=command_id, success=False, code=code)

    @classmethod
    def null(cls, command_id: str, success: bool, code: int) -> ResultMessage:
        """A result that carries an explicit ``"data": null``."""
        return cls(id=command_id, success=success, code=code, data=None)


class ErrorMessage(Message):
    """Protocol-level error: the command never reached the SDK."""

    type: Literal["error"] = "error"
    id: str
    message: str


class FatalMessage(Message):
    """Initialization failure; the process exits after emitting it."""

    type: Literal["fatal"] = "fatal"
    message: str


OutboundMessage = EventMessage | ResultMessage | ErrorMessage | FatalMessage


def decode_message(line: str) -> OutboundMessage:
    """Parse one output line back into a message (client side).

    Raises:
        ValueError: If the line is not a known message object
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("Message is not a JSON object")
    kind = data.get("type")
    if kind == "event":
        return EventMessage.model_validate(data)
    if kind == "result":
        return ResultMessage.model_validate(data)
    if kind == "error":
        return ErrorMessage.model_validate(data)
    if kind == "fatal":
        return FatalMessage.model_validate(data)
    raise ValueError(f"Unknown message type: {kind!r}")
