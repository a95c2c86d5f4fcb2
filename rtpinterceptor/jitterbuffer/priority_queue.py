"""A queue of RTP packets kept in sequence-number order."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Iterator

from rtpinterceptor.packets import RTPPacket


class InvalidOperationError(LookupError):
    """Raised when popping from an empty queue."""

    def __init__(self, message: str = "attempt to find or pop on an empty list"):
        super().__init__(message)


class NotFoundError(LookupError):
    """Raised when no packet matches the requested priority or timestamp."""

    def __init__(self, message: str = "priority not found"):
        super().__init__(message)


@dataclass
class _Entry:
    priority: int
    packet: RTPPacket


def _priority(entry: _Entry) -> int:
    return entry.priority


class PriorityQueue:
    """Packets ordered by ascending priority (normally the sequence number)."""

    def __init__(self) -> None:
        self._entries: list[_Entry] = []

    def push(self, packet: RTPPacket, priority: int) -> None:
        """Insert a packet before any packet of equal or higher priority."""
        index = bisect.bisect_left(self._entries, priority, key=_priority)
        self._entries.insert(index, _Entry(priority, packet))

    def find(self, sequence_number: int) -> RTPPacket:
        """Return the packet with this priority without removing it."""
        for entry in self._entries:
            if entry.priority == sequence_number:
                return entry.packet
        raise NotFoundError()

    def pop(self) -> RTPPacket:
        """Remove and return the first packet, whatever its priority."""
        if not self._entries:
            raise InvalidOperationError()
        return self._entries.pop(0).packet

    def pop_at(self, sequence_number: int) -> RTPPacket:
        """Remove and return the packet with this priority."""
        return self._pop_matching(lambda entry: entry.priority == sequence_number)

    def pop_at_timestamp(self, timestamp: int) -> RTPPacket:
        """Remove and return the first packet carrying this RTP timestamp."""
        return self._pop_matching(lambda entry: entry.packet.header.timestamp == timestamp)

    def _pop_matching(self, predicate) -> RTPPacket:
        if not self._entries:
            raise InvalidOperationError()
        for index, entry in enumerate(self._entries):
            if predicate(entry):
                del self._entries[index]
                return entry.packet
        raise NotFoundError()

    def clear(self) -> None:
        """Remove every packet."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RTPPacket]:
        return iter([entry.packet for entry in self._entries])