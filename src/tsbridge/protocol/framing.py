"""Message framing for the tsserver stdio protocol.

tsserver writes its replies and events to stdout with a header block:

    Content-Length: <length>\r\n
    \r\n
    <json body, exactly <length> bytes>

and reads commands from stdin as one JSON object per line.

Two incoming decoders are provided, chosen per deployment:

- FrameDecoder: Content-Length framing, robust to arbitrary chunking.
- LineFrameDecoder: degraded mode, any line starting with ``{`` is a frame.
  Multi-line payloads are not supported in this mode.

Both are plain state machines over a byte buffer: ``feed()`` appends a
chunk and returns an iterator over the frame bodies that are complete.
Consume the iterator before feeding the next chunk.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any, Protocol

from tsbridge.errors import MalformedFrameError
from tsbridge.logging import TRACE, get_logger

CONTENT_LENGTH = "Content-Length"
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"
CRLF = "\r\n"
HEADER_SEPARATOR = b"\r\n\r\n"
HEADER_MARKER = b"Content-Length:"
LINE_SEPARATOR = b"\n"
OBJECT_START = b"{"

MODE_CONTENT_LENGTH = "content-length"
MODE_LINE = "line"

log = get_logger("framing")


def parse_header(header_bytes: bytes) -> dict[str, str]:
    """Parse a header block into a dict.

    Args:
        header_bytes: Raw header bytes without the trailing blank line,
            e.g. b"Content-Length: 123\\r\\nContent-Type: ...".

    Returns:
        Mapping of header name to value.

    Raises:
        MalformedFrameError: If the block is empty, a line has no colon,
            or Content-Length is missing/invalid/negative.
    """
    headers: dict[str, str] = {}

    if not header_bytes:
        raise MalformedFrameError("Empty header block")

    try:
        header_text = header_bytes.decode(HEADER_ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"Header contains non-ASCII characters: {e}") from e

    for line in header_text.split(CRLF):
        if not line:
            continue

        name, sep, value = line.partition(":")
        if not sep:
            raise MalformedFrameError(f"Malformed header line (no colon): {line!r}")

        name = name.strip()
        if not name:
            raise MalformedFrameError(f"Empty header name in line: {line!r}")

        headers[name] = value.strip()

    if CONTENT_LENGTH not in headers:
        raise MalformedFrameError("Missing required Content-Length header")

    try:
        length = int(headers[CONTENT_LENGTH])
    except ValueError as e:
        raise MalformedFrameError(
            f"Invalid Content-Length value: {headers[CONTENT_LENGTH]!r}"
        ) from e

    if length < 0:
        raise MalformedFrameError(f"Negative Content-Length: {length}")

    return headers


def _as_bytes(chunk: bytes | bytearray | str) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode(CONTENT_ENCODING)
    return bytes(chunk)


class Decoder(Protocol):
    """Incremental frame decoder."""

    def feed(self, chunk: bytes | str) -> Iterator[bytes]: ...

    @property
    def buffered(self) -> int: ...


class FrameDecoder:
    """Content-Length frame decoder.

    State is the accumulation buffer plus the declared length of the body
    currently being waited for (None while looking for a header). After a
    header block that cannot be parsed, input is skipped up to the next
    ``Content-Length:`` line.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._expected: int | None = None
        self._resync = False

    @property
    def buffered(self) -> int:
        """Number of bytes held back waiting for more input."""
        return len(self._buffer)

    @property
    def expected_length(self) -> int | None:
        """Declared length of the body being assembled, if a header was read."""
        return self._expected

    def feed(self, chunk: bytes | str) -> Iterator[bytes]:
        """Append a chunk and return an iterator over completed frame bodies."""
        self._buffer.extend(_as_bytes(chunk))
        return self._frames()

    def _frames(self) -> Iterator[bytes]:
        while True:
            if self._expected is None:
                if self._resync and not self._skip_to_marker():
                    return

                header_end = self._buffer.find(HEADER_SEPARATOR)
                if header_end == -1:
                    return

                header = bytes(self._buffer[:header_end])
                # The header block is consumed whether or not it parses
                del self._buffer[: header_end + len(HEADER_SEPARATOR)]
                length = self._declared_length(header)
                if length is None:
                    # The body of a bad frame is unframed; skip to the next header
                    self._resync = True
                    continue
                self._expected = length

            if len(self._buffer) < self._expected:
                return

            body = bytes(self._buffer[: self._expected])
            del self._buffer[: self._expected]
            self._expected = None
            yield body

    def _declared_length(self, header: bytes) -> int | None:
        try:
            return int(parse_header(header)[CONTENT_LENGTH])
        except MalformedFrameError as e:
            log.error("Dropping malformed frame header %r: %s", header[:200], e)

        # Stray output before a real header ends up in the same block
        start = header.rfind(HEADER_MARKER)
        if start > 0:
            try:
                return int(parse_header(header[start:])[CONTENT_LENGTH])
            except MalformedFrameError:
                pass
        return None

    def _skip_to_marker(self) -> bool:
        """Discard bytes up to the next Content-Length line.

        Returns False when no marker is buffered yet; a possible partial
        marker at the end is kept.
        """
        start = self._buffer.find(HEADER_MARKER)
        if start == -1:
            keep = len(HEADER_MARKER) - 1
            if len(self._buffer) > keep:
                del self._buffer[: len(self._buffer) - keep]
            return False
        del self._buffer[:start]
        self._resync = False
        return True


class LineFrameDecoder:
    """Line-oriented frame decoder (degraded mode).

    A frame is any complete line whose stripped content starts with ``{``.
    Everything else, including Content-Length header lines, is skipped.
    The trailing partial line is kept until its newline arrives.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes | str) -> Iterator[bytes]:
        self._buffer.extend(_as_bytes(chunk))
        return self._frames()

    def _frames(self) -> Iterator[bytes]:
        while True:
            newline = self._buffer.find(LINE_SEPARATOR)
            if newline == -1:
                return
            line = bytes(self._buffer[:newline]).strip()
            del self._buffer[: newline + 1]
            if line.startswith(OBJECT_START):
                yield line
            elif line:
                log.log(TRACE, "Skipping non-payload line: %r", line[:200])


def create_decoder(mode: str = MODE_CONTENT_LENGTH) -> Decoder:
    """Create the decoder for a framing mode.

    Raises:
        ValueError: If mode is not "content-length" or "line".
    """
    if mode == MODE_CONTENT_LENGTH:
        return FrameDecoder()
    if mode == MODE_LINE:
        return LineFrameDecoder()
    raise ValueError(f"Unknown framing mode: {mode!r}")


def encode_command(payload: dict[str, Any]) -> bytes:
    """Serialize an outgoing command as one compact JSON line.

    Raises:
        MalformedFrameError: If the payload cannot be serialized to JSON.
    """
    try:
        body = json.dumps(payload, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Command cannot be serialized to JSON: {e}") from e
    return (body + "\n").encode(CONTENT_ENCODING)


def encode_frame(payload: dict[str, Any]) -> bytes:
    """Serialize a message with Content-Length framing, the way tsserver writes it.

    The body is the JSON text followed by a newline; the newline is
    counted in Content-Length.
    """
    try:
        body = (json.dumps(payload, separators=(",", ":")) + "\n").encode(CONTENT_ENCODING)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Message cannot be serialized to JSON: {e}") from e

    header = f"{CONTENT_LENGTH}: {len(body)}{CRLF}{CRLF}".encode(HEADER_ENCODING)
    return header + body
