"""tsserver message types."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from tsbridge.errors import MalformedFrameError

REQUEST = "request"
RESPONSE = "response"
EVENT = "event"


@dataclass
class CommandEnvelope:
    """Outgoing command, built per call and discarded after writing."""

    command: str
    arguments: Any = None
    seq: int | None = None
    type: str = REQUEST

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d: dict[str, Any] = {}
        if self.seq is not None:
            d["seq"] = self.seq
        d["type"] = self.type
        d["command"] = self.command
        if self.arguments is not None:
            d["arguments"] = self.arguments
        return d


@dataclass
class DecodedMessage:
    """A parsed message from tsserver.

    Replies carry ``request_seq`` (the seq of the command they answer)
    and ``success``; events carry ``event`` and usually ``body``.
    """

    type: str | None = None
    seq: int | None = None
    command: str | None = None
    request_seq: int | None = None
    success: bool | None = None
    message: str | None = None
    event: str | None = None
    body: Any = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_response(self) -> bool:
        """True if this is a reply to a numbered request."""
        return self.type == RESPONSE and isinstance(self.request_seq, int)

    @property
    def is_event(self) -> bool:
        """True if this is an unsolicited event."""
        return self.type == EVENT

    @property
    def succeeded(self) -> bool:
        """Reply outcome; a reply without a success flag counts as success."""
        return self.success is not False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecodedMessage:
        """Parse from dictionary."""
        request_seq = data.get("request_seq")
        return cls(
            type=data.get("type"),
            seq=data.get("seq"),
            command=data.get("command"),
            request_seq=request_seq if isinstance(request_seq, int) else None,
            success=data.get("success"),
            message=data.get("message"),
            event=data.get("event"),
            body=data.get("body"),
            raw=data,
        )


def decode_message(frame: bytes) -> DecodedMessage:
    """Decode one frame body.

    Raises:
        MalformedFrameError: If the body is not UTF-8 JSON or not an object.
    """
    try:
        text = frame.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"Invalid UTF-8 in message body: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFrameError(f"Invalid JSON in message body: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFrameError(f"Message must be a JSON object, got {type(data).__name__}")

    return DecodedMessage.from_dict(data)
