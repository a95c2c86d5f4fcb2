"""A sliding record of which RTP sequence numbers have been received."""

from __future__ import annotations

import threading
from typing import Iterator

SEQ_MASK = 0xFFFF
UINT16_SIZE_HALF = 1 << 15


class InvalidSizeError(ValueError):
    """Raised when a buffer is created with a size that is not allowed."""


def validate_size(size: int, smallest_exponent: int) -> None:
    """Raise InvalidSizeError unless size is a power of two in the allowed range."""
    allowed = [1 << exponent for exponent in range(smallest_exponent, 16)]
    if size not in allowed:
        raise InvalidSizeError(
            f"invalid buffer size: {size} is not a valid size, allowed sizes: {allowed}"
        )


def seq_range(start: int, stop: int) -> Iterator[int]:
    """Sequence numbers from start up to, not including, stop, wrapping at 65536."""
    current = start & SEQ_MASK
    stop &= SEQ_MASK
    while current != stop:
        yield current
        current = (current + 1) & SEQ_MASK


class ReceiveLog:
    """Tracks received sequence numbers over a window of the last ``size`` packets."""

    def __init__(self, size: int) -> None:
        validate_size(size, 6)
        self.size = size
        self._received = [False] * size
        self.end = 0
        self.started = False
        self.last_consecutive = 0
        self._lock = threading.Lock()

    def add(self, sequence_number: int) -> None:
        """Record a received sequence number."""
        seq = sequence_number & SEQ_MASK
        with self._lock:
            if not self.started:
                self._set(seq, True)
                self.end = seq
                self.started = True
                self.last_consecutive = seq
                return

            diff = (seq - self.end) & SEQ_MASK
            if diff == 0:
                return
            if diff < UINT16_SIZE_HALF:
                # seq is ahead of end: forget whatever the slots in between held
                for missing in seq_range(self.end + 1, seq):
                    self._set(missing, False)
                self.end = seq
                if (self.last_consecutive + 1) & SEQ_MASK == seq:
                    self.last_consecutive = seq
                elif (seq - self.last_consecutive) & SEQ_MASK > self.size:
                    self.last_consecutive = (seq - self.size) & SEQ_MASK
                    self._fix_last_consecutive()
            elif (self.last_consecutive + 1) & SEQ_MASK == seq:
                self.last_consecutive = seq
                self._fix_last_consecutive()

            self._set(seq, True)

    def get(self, sequence_number: int) -> bool:
        """True if the sequence number is within the window and was received."""
        seq = sequence_number & SEQ_MASK
        with self._lock:
            diff = (self.end - seq) & SEQ_MASK
            if diff >= UINT16_SIZE_HALF or diff >= self.size:
                return False
            return self._received[seq % self.size]

    def missing_seq_numbers(self, skip_last_n: int = 0) -> list[int]:
        """Sequence numbers not yet received, ignoring the newest ``skip_last_n``."""
        with self._lock:
            until = (self.end - skip_last_n) & SEQ_MASK
            if (until - self.last_consecutive) & SEQ_MASK >= UINT16_SIZE_HALF:
                return []
            return [
                seq
                for seq in seq_range(self.last_consecutive + 1, until + 1)
                if not self._received[seq % self.size]
            ]

    def _set(self, seq: int, received: bool) -> None:
        self._received[seq % self.size] = received

    def _fix_last_consecutive(self) -> None:
        seq = (self.last_consecutive + 1) & SEQ_MASK
        stop = (self.end + 1) & SEQ_MASK
        while seq != stop and self._received[seq % self.size]:
            seq = (seq + 1) & SEQ_MASK
        self.last_consecutive = (seq - 1) & SEQ_MASK