"""Reference-counted copies of sent RTP packets and the buffer that keeps them."""

from __future__ import annotations

import random
import threading
from typing import Optional

from rtpinterceptor.nack.receive_log import SEQ_MASK, UINT16_SIZE_HALF, seq_range, validate_size
from rtpinterceptor.packets import RTPHeader

MAX_PAYLOAD_LEN = 1460


class PacketReleasedError(RuntimeError):
    """Raised when retaining a packet that has already been released."""

    def __init__(self, message: str = "could not retain packet, already released"):
        super().__init__(message)


class PaddingOverflowError(ValueError):
    """Raised when the padding length byte exceeds the payload size."""

    def __init__(self, message: str = "padding size exceeds payload size"):
        super().__init__(message)


class ShortBufferError(ValueError):
    """Raised when a payload does not fit the packet buffer."""

    def __init__(self, message: str = "short buffer"):
        super().__init__(message)


class RetainablePacket:
    """An RTP packet with a retain count; released packets drop their data."""

    def __init__(self, header: RTPHeader, payload: bytes, sequence_number: int) -> None:
        self.header: Optional[RTPHeader] = header
        self.payload: Optional[bytes] = payload
        self.sequence_number = sequence_number & SEQ_MASK
        self._count = 1
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        """Current retain count."""
        with self._lock:
            return self._count

    def retain(self) -> None:
        """Take another reference; raises PacketReleasedError once released."""
        with self._lock:
            if self._count == 0:
                raise PacketReleasedError()
            self._count += 1

    def release(self) -> None:
        """Drop a reference; the last one discards header and payload."""
        with self._lock:
            self._count -= 1
            if self._count == 0:
                self.header = None
                self.payload = None


class _RandomSequencer:
    """Hands out consecutive sequence numbers from a random starting point."""

    def __init__(self) -> None:
        self._sequence_number = random.randrange(1 << 16)
        self._lock = threading.Lock()

    def next_sequence_number(self) -> int:
        with self._lock:
            self._sequence_number = (self._sequence_number + 1) & SEQ_MASK
            return self._sequence_number


class PacketManager:
    """Creates packets holding private copies of header and payload, rewritten
    for RFC 4588 retransmission when an RTX SSRC and payload type are given."""

    def __init__(self) -> None:
        self._rtx_sequencer = _RandomSequencer()

    def new_packet(
        self,
        header: RTPHeader,
        payload: Optional[bytes],
        rtx_ssrc: int,
        rtx_payload_type: int,
    ) -> RetainablePacket:
        data = bytes(payload) if payload is not None else b""
        if len(data) > MAX_PAYLOAD_LEN:
            raise ShortBufferError()

        copy = header.clone()
        packet = RetainablePacket(copy, data, header.sequence_number)

        if rtx_ssrc != 0 and rtx_payload_type != 0:
            original_sequence_number = copy.sequence_number & SEQ_MASK
            copy.sequence_number = self._rtx_sequencer.next_sequence_number()
            copy.ssrc = rtx_ssrc
            copy.payload_type = rtx_payload_type

            padding_length = 0
            if copy.padding and data:
                padding_length = data[-1]
                if padding_length > len(data):
                    raise PaddingOverflowError()
                copy.padding = False

            packet.payload = original_sequence_number.to_bytes(2, "big") + data[
                : len(data) - padding_length
            ]

        return packet


class NoOpPacketFactory:
    """Creates packets that share the caller's header and payload without copying."""

    def new_packet(
        self,
        header: RTPHeader,
        payload: Optional[bytes],
        rtx_ssrc: int,
        rtx_payload_type: int,
    ) -> RetainablePacket:
        return RetainablePacket(header, payload, header.sequence_number)


class SendBuffer:
    """Keeps the last ``size`` sent packets, indexed by sequence number."""

    def __init__(self, size: int) -> None:
        validate_size(size, 0)
        self.size = size
        self._packets: list[Optional[RetainablePacket]] = [None] * size
        self._last_added = 0
        self._started = False
        self._lock = threading.Lock()

    def add(self, packet: RetainablePacket) -> None:
        """Store a packet, releasing whatever it and any skipped slots replace."""
        seq = packet.sequence_number
        with self._lock:
            if not self._started:
                self._packets[seq % self.size] = packet
                self._last_added = seq
                self._started = True
                return

            diff = (seq - self._last_added) & SEQ_MASK
            if diff == 0:
                return
            if diff < UINT16_SIZE_HALF:
                for skipped in seq_range(self._last_added + 1, seq):
                    self._replace(skipped % self.size, None)

            self._replace(seq % self.size, packet)
            self._last_added = seq

    def _replace(self, index: int, packet: Optional[RetainablePacket]) -> None:
        previous = self._packets[index]
        if previous is not None:
            previous.release()
        self._packets[index] = packet

    def get(self, sequence_number: int) -> Optional[RetainablePacket]:
        """Return a retained packet for the sequence number, or None.

        The caller must release the returned packet when done with it.
        """
        seq = sequence_number & SEQ_MASK
        with self._lock:
            diff = (self._last_added - seq) & SEQ_MASK
            if diff >= UINT16_SIZE_HALF or diff >= self.size:
                return None
            packet = self._packets[seq % self.size]
            if packet is None or packet.sequence_number != seq:
                return None
            try:
                packet.retain()
            except PacketReleasedError:
                return None
            return packet