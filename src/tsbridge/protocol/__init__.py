"""Wire protocol for talking to tsserver over stdio."""

from tsbridge.protocol.commands import (
    DEFAULT_READY_EVENT,
    DIAGNOSTIC_EVENTS,
    EXIT_COMMAND,
    FIRE_AND_FORGET_COMMANDS,
    REQUEST_COMPLETED_EVENT,
    fire_and_forget_table,
)
from tsbridge.protocol.framing import (
    Decoder,
    FrameDecoder,
    LineFrameDecoder,
    create_decoder,
    encode_command,
    encode_frame,
    parse_header,
)
from tsbridge.protocol.messages import CommandEnvelope, DecodedMessage, decode_message

__all__ = [
    "CommandEnvelope",
    "DecodedMessage",
    "decode_message",
    "Decoder",
    "FrameDecoder",
    "LineFrameDecoder",
    "create_decoder",
    "encode_command",
    "encode_frame",
    "parse_header",
    "FIRE_AND_FORGET_COMMANDS",
    "EXIT_COMMAND",
    "DEFAULT_READY_EVENT",
    "REQUEST_COMPLETED_EVENT",
    "DIAGNOSTIC_EVENTS",
    "fire_and_forget_table",
]
