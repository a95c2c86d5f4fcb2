"""Per-stream reception statistics used to build RTCP receiver reports."""

from __future__ import annotations

import random
import threading
from datetime import datetime
from typing import Optional

from rtpinterceptor.nack.receive_log import SEQ_MASK, seq_range
from rtpinterceptor.packets import ReceiverReport, ReceptionReport, RTPHeader, SenderReport

# Each history entry is a 64-bit mask, so one entry tracks 64 packets.
PACKETS_PER_HISTORY_ENTRY = 64
DEFAULT_HISTORY_SIZE = 128

_UINT32_MASK = 0xFFFFFFFF
_MAX_24_BITS = 0xFFFFFF
_HALF_SEQ_SPACE = 1 << 15


class ReceiverStream:
    """Tracks received sequence numbers, loss and jitter of one remote stream."""

    def __init__(self, ssrc: int, clock_rate: int) -> None:
        self.ssrc = ssrc
        self.receiver_ssrc = random.getrandbits(32)
        self.clock_rate = float(clock_rate)
        self.size = DEFAULT_HISTORY_SIZE
        self._history = [False] * (self.size * PACKETS_PER_HISTORY_ENTRY)
        self._lock = threading.Lock()
        self._started = False
        self.seqnum_cycles = 0
        self.last_seqnum = 0
        self.last_report_seqnum = 0
        self._last_rtp_time_rtp = 0
        self._last_rtp_time_time: Optional[datetime] = None
        self.jitter = 0.0
        self.last_sender_report = 0
        self._last_sender_report_time: Optional[datetime] = None
        self.total_lost = 0

    def _position(self, sequence_number: int) -> int:
        return (sequence_number & SEQ_MASK) % len(self._history)

    def set_received(self, sequence_number: int) -> None:
        """Mark a sequence number as received."""
        self._history[self._position(sequence_number)] = True

    def del_received(self, sequence_number: int) -> None:
        """Mark a sequence number as not received."""
        self._history[self._position(sequence_number)] = False

    def get_received(self, sequence_number: int) -> bool:
        """True if the sequence number is marked as received."""
        return self._history[self._position(sequence_number)]

    def process_rtp(self, now: datetime, header: RTPHeader) -> None:
        """Update sequence tracking and the interarrival jitter (RFC 3550 A.8)."""
        seq = header.sequence_number & SEQ_MASK
        with self._lock:
            if not self._started:
                self._started = True
                self.set_received(seq)
                self.last_seqnum = seq
                self.last_report_seqnum = (seq - 1) & SEQ_MASK
                self._last_rtp_time_rtp = header.timestamp
                self._last_rtp_time_time = now
                return

            self.set_received(seq)

            diff = (seq - self.last_seqnum) & SEQ_MASK
            if 0 < diff < _HALF_SEQ_SPACE:
                if seq < self.last_seqnum:
                    self.seqnum_cycles = (self.seqnum_cycles + 1) & SEQ_MASK
                for missing in seq_range(self.last_seqnum + 1, seq):
                    self.del_received(missing)
                self.last_seqnum = seq

            elapsed = (now - self._last_rtp_time_time).total_seconds()
            d = abs(elapsed * self.clock_rate - (float(header.timestamp) - float(self._last_rtp_time_rtp)))
            self.jitter += (d - self.jitter) / 16
            self._last_rtp_time_rtp = header.timestamp
            self._last_rtp_time_time = now

    def process_sender_report(self, now: datetime, report: SenderReport) -> None:
        """Remember the middle 32 bits of the sender report's NTP time and when it came."""
        with self._lock:
            self.last_sender_report = (report.ntp_time >> 16) & _UINT32_MASK
            self._last_sender_report_time = now

    def generate_report(self, now: datetime) -> ReceiverReport:
        """Build a receiver report covering the packets since the previous report."""
        with self._lock:
            total_since_report = (self.last_seqnum - self.last_report_seqnum) & SEQ_MASK
            if self.last_seqnum == self.last_report_seqnum:
                lost_since_report = 0
            else:
                lost_since_report = sum(
                    1
                    for seq in seq_range(self.last_report_seqnum + 1, self.last_seqnum)
                    if not self.get_received(seq)
                )
            self.total_lost = min((self.total_lost + lost_since_report) & _UINT32_MASK, _MAX_24_BITS)
            lost_since_report = min(lost_since_report, _MAX_24_BITS)

            if total_since_report:
                fraction_lost = int(lost_since_report * 256 / total_since_report) & 0xFF
            else:
                fraction_lost = 0

            if self._last_sender_report_time is None:
                delay = 0
            else:
                seconds = (now - self._last_sender_report_time).total_seconds()
                delay = int(seconds * 65536) & _UINT32_MASK

            report = ReceiverReport(
                ssrc=self.receiver_ssrc,
                reports=[
                    ReceptionReport(
                        ssrc=self.ssrc,
                        last_sequence_number=(self.seqnum_cycles << 16) | self.last_seqnum,
                        last_sender_report=self.last_sender_report,
                        fraction_lost=fraction_lost,
                        total_lost=self.total_lost,
                        delay=delay,
                        jitter=int(self.jitter) & _UINT32_MASK,
                    )
                ],
            )
            self.last_report_seqnum = self.last_seqnum
            return report