"""Correlation of asynchronous replies with the requests that caused them.

Each outstanding request is a PendingRequest keyed by its sequence
number, holding a success callback, a failure callback and an optional
expiry timer on the running event loop. An entry leaves the table
exactly once: on resolve, on reject, on timer expiry, or when the table
is drained because the process went away. Whatever removes it cancels
the timer, so a late reply for a removed entry finds nothing and is
dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tsbridge.errors import RequestTimeoutError
from tsbridge.logging import get_logger

log = get_logger("correlation")

SuccessCallback = Callable[[Any], None]
FailureCallback = Callable[[BaseException], None]


@dataclass
class PendingRequest:
    """Bookkeeping for one outstanding request."""

    seq: int
    command: str
    on_success: SuccessCallback
    on_failure: FailureCallback
    timeout: float | None = None
    timer: asyncio.TimerHandle | None = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class CorrelationTable:
    """Outstanding requests by sequence number.

    Owns the sequence counter: numbers start at 1 and only go up for the
    lifetime of the table. One table serves exactly one server process.
    """

    def __init__(self) -> None:
        self._pending: dict[int, PendingRequest] = {}
        self._last_seq = 0

    def next_seq(self) -> int:
        """Allocate the next sequence number."""
        self._last_seq += 1
        return self._last_seq

    @property
    def last_seq(self) -> int:
        return self._last_seq

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, seq: object) -> bool:
        return seq in self._pending

    def get(self, seq: int) -> PendingRequest | None:
        return self._pending.get(seq)

    def register(
        self,
        seq: int,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        timeout: float | None,
        command: str = "",
    ) -> PendingRequest:
        """Track a request and start its expiry timer.

        Args:
            seq: Sequence number of the request.
            on_success: Called with the reply payload.
            on_failure: Called with the exception that ended the request.
            timeout: Seconds before the request fails with
                RequestTimeoutError. None disables the timer.
            command: Command name, for error messages and logs.

        Raises:
            ValueError: If ``seq`` is already pending.
        """
        if seq in self._pending:
            raise ValueError(f"Request {seq} is already pending")

        entry = PendingRequest(
            seq=seq,
            command=command,
            on_success=on_success,
            on_failure=on_failure,
            timeout=timeout,
        )
        if timeout is not None:
            loop = asyncio.get_running_loop()
            entry.timer = loop.call_later(timeout, self._expire, seq)
        self._pending[seq] = entry
        return entry

    def resolve(self, seq: int, payload: Any) -> bool:
        """Complete a request successfully.

        Returns:
            True if a pending entry was found. Unknown or already finished
            sequence numbers are ignored and return False.
        """
        entry = self._pop(seq)
        if entry is None:
            return False
        entry.on_success(payload)
        return True

    def reject(self, seq: int, error: BaseException) -> bool:
        """Fail a request. Same lookup rules as resolve()."""
        entry = self._pop(seq)
        if entry is None:
            return False
        entry.on_failure(error)
        return True

    def discard(self, seq: int) -> bool:
        """Forget a request without calling either callback."""
        return self._pop(seq) is not None

    def fail_all(self, error_factory: Callable[[], BaseException]) -> int:
        """Fail every pending request, each with a fresh exception.

        Returns:
            Number of requests failed.
        """
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            entry.cancel_timer()
        for entry in entries:
            entry.on_failure(error_factory())
        if entries:
            log.debug("Failed %d pending request(s)", len(entries))
        return len(entries)

    def _pop(self, seq: int) -> PendingRequest | None:
        entry = self._pending.pop(seq, None)
        if entry is not None:
            entry.cancel_timer()
        return entry

    def _expire(self, seq: int) -> None:
        entry = self._pending.pop(seq, None)
        if entry is None:
            return
        entry.timer = None
        log.warning("Request %s (%s) timed out after %ss", seq, entry.command, entry.timeout)
        entry.on_failure(RequestTimeoutError(seq, entry.command, entry.timeout or 0.0))
