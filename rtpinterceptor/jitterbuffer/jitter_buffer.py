"""A buffer that reorders RTP packets and releases them once enough have arrived."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable

from rtpinterceptor.jitterbuffer.priority_queue import (
    InvalidOperationError,
    NotFoundError,
    PriorityQueue,
)
from rtpinterceptor.packets import RTPPacket

DEFAULT_MIN_PACKET_COUNT = 50
_OVERFLOW_LIMIT = 100


class BufferUnderrunError(LookupError):
    """Raised when peeking into an empty jitter buffer."""

    def __init__(self, message: str = "invalid Peek: Empty jitter buffer"):
        super().__init__(message)


class PopWhileBufferingError(RuntimeError):
    """Raised when popping before the buffer has started emitting."""

    def __init__(self, message: str = "attempt to pop while buffering"):
        super().__init__(message)


class State(IntEnum):
    BUFFERING = 0
    EMITTING = 1

    def __str__(self) -> str:
        return self.name.capitalize()


class Event(str, Enum):
    START_BUFFERING = "startBuffering"
    BEGIN_PLAYBACK = "playing"
    BUFFER_UNDERFLOW = "underflow"
    BUFFER_OVERFLOW = "overflow"


@dataclass
class Stats:
    """Counters kept for the lifetime of a jitter buffer."""

    out_of_order_count: int = 0
    underflow_count: int = 0
    overflow_count: int = 0


EventListener = Callable[[Event, "JitterBuffer"], None]


class JitterBuffer:
    """Accepts pushed packets, keeps them in sequence order and releases them in
    sequence order or by timestamp once the minimum packet count is reached."""

    def __init__(self, min_packet_count: int = DEFAULT_MIN_PACKET_COUNT) -> None:
        self.packets = PriorityQueue()
        self.min_start_count = min_packet_count
        self.last_sequence = 0
        self._playout_head = 0
        self._playout_ready = False
        self.state = State.BUFFERING
        self.stats = Stats()
        self._listeners: dict[Event, list[EventListener]] = defaultdict(list)
        self._lock = threading.RLock()

    def listen(self, event: Event, callback: EventListener) -> None:
        """Register a callback for an event."""
        self._listeners[Event(event)].append(callback)

    @property
    def playout_head(self) -> int:
        """Sequence number that the next pop will try to return."""
        with self._lock:
            return self._playout_head

    @playout_head.setter
    def playout_head(self, value: int) -> None:
        with self._lock:
            self._playout_head = value & 0xFFFF

    def _emit(self, event: Event) -> None:
        for callback in list(self._listeners.get(event, ())):
            callback(event, self)

    def _update_stats(self, sequence_number: int) -> None:
        if len(self.packets) > 0 and sequence_number != (self.last_sequence + 1) & 0xFFFF:
            self.stats.out_of_order_count += 1
        self.last_sequence = sequence_number

    def _update_state(self) -> None:
        if len(self.packets) >= self.min_start_count and self.state == State.BUFFERING:
            self.state = State.EMITTING
            self._playout_ready = True
            self._emit(Event.BEGIN_PLAYBACK)

    def push(self, packet: RTPPacket) -> None:
        """Add a packet; it is stored as given, not copied."""
        sequence_number = packet.header.sequence_number
        with self._lock:
            if len(self.packets) == 0:
                self._emit(Event.START_BUFFERING)
            if len(self.packets) > _OVERFLOW_LIMIT:
                self.stats.overflow_count += 1
                self._emit(Event.BUFFER_OVERFLOW)
            if not self._playout_ready and len(self.packets) == 0:
                self._playout_head = sequence_number
            self._update_stats(sequence_number)
            self.packets.push(packet, sequence_number)
            self._update_state()

    def peek(self, playout_head: bool) -> RTPPacket:
        """Return the packet at the playout head (when emitting and asked for),
        otherwise the last one received, without removing it."""
        with self._lock:
            if len(self.packets) < 1:
                raise BufferUnderrunError()
            if playout_head and self.state == State.EMITTING:
                return self.packets.find(self._playout_head)
            return self.packets.find(self.last_sequence)

    def _pop_with(self, take: Callable[[], RTPPacket], advance_head: bool) -> RTPPacket:
        with self._lock:
            if self.state != State.EMITTING:
                raise PopWhileBufferingError()
            try:
                packet = take()
            except (InvalidOperationError, NotFoundError):
                self.stats.underflow_count += 1
                self._emit(Event.BUFFER_UNDERFLOW)
                raise
            if advance_head:
                self._playout_head = (self._playout_head + 1) & 0xFFFF
            self._update_state()
            return packet

    def pop(self) -> RTPPacket:
        """Remove and return the packet at the playout head."""
        return self._pop_with(lambda: self.packets.pop_at(self._playout_head), True)

    def pop_at_sequence(self, sequence_number: int) -> RTPPacket:
        """Remove and return the packet with the given sequence number."""
        return self._pop_with(lambda: self.packets.pop_at(sequence_number), True)

    def peek_at_sequence(self, sequence_number: int) -> RTPPacket:
        """Return the packet with the given sequence number without removing it."""
        with self._lock:
            return self.packets.find(sequence_number)

    def pop_at_timestamp(self, timestamp: int) -> RTPPacket:
        """Remove and return a packet with the given RTP timestamp; call
        repeatedly to drain every packet at that timestamp."""
        return self._pop_with(lambda: self.packets.pop_at_timestamp(timestamp), False)

    def clear(self, reset_state: bool = False) -> None:
        """Empty the buffer and, if asked, reset state, statistics and defaults."""
        with self._lock:
            self.packets.clear()
            if reset_state:
                self.last_sequence = 0
                self.state = State.BUFFERING
                self.stats = Stats()
                self.min_start_count = DEFAULT_MIN_PACKET_COUNT