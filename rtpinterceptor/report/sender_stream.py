"""Per-stream sending statistics used to build RTCP sender reports."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

from rtpinterceptor.nack.receive_log import SEQ_MASK
from rtpinterceptor.packets import RTPHeader, SenderReport

# Seconds between the NTP epoch (1900) and the Unix epoch (1970).
NTP_EPOCH_OFFSET = 0x83AA7E80
UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_MICROSECOND = timedelta(microseconds=1)
_NANOS_PER_SECOND = 10**9
_INT64_MAX = (1 << 63) - 1
_INT64_MIN = -(1 << 63)
_UINT32_MASK = 0xFFFFFFFF
_UINT64_MASK = (1 << 64) - 1
_HALF_SEQ_SPACE = 1 << 15


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _elapsed_seconds(later: datetime, earlier: datetime) -> float:
    """Seconds from earlier to later, saturating like a 64-bit nanosecond duration."""
    nanos = (_aware(later) - _aware(earlier)) // _MICROSECOND * 1000
    nanos = max(_INT64_MIN, min(_INT64_MAX, nanos))
    seconds = abs(nanos) // _NANOS_PER_SECOND
    if nanos < 0:
        seconds = -seconds
    return seconds + (nanos - seconds * _NANOS_PER_SECOND) / 1e9


def to_ntp(moment: datetime) -> int:
    """64-bit NTP timestamp: seconds since 1900 in the high word, fraction in the low."""
    nanos = ((_aware(moment) - UNIX_EPOCH) // _MICROSECOND * 1000) & _UINT64_MASK
    seconds = nanos // _NANOS_PER_SECOND + NTP_EPOCH_OFFSET
    fraction = ((nanos % _NANOS_PER_SECOND) << 32) // _NANOS_PER_SECOND
    return ((seconds << 32) | fraction) & _UINT64_MASK


class SenderStream:
    """Counts packets and octets of one local stream and tracks its RTP clock."""

    def __init__(self, ssrc: int, clock_rate: int, use_latest_packet: bool = False) -> None:
        self.ssrc = ssrc
        self.clock_rate = float(clock_rate)
        self.use_latest_packet = use_latest_packet
        self._lock = threading.Lock()
        self._last_rtp_time_rtp = 0
        self._last_rtp_time_time = ZERO_TIME
        self._last_rtp_sn = 0
        self.packet_count = 0
        self.octet_count = 0

    def process_rtp(self, now: datetime, header: RTPHeader, payload: bytes) -> None:
        """Count a sent packet; in-order packets (or all, if asked) move the RTP clock."""
        seq = header.sequence_number & SEQ_MASK
        with self._lock:
            diff = (seq - self._last_rtp_sn) & SEQ_MASK
            if self.use_latest_packet or self.packet_count == 0 or 0 < diff < _HALF_SEQ_SPACE:
                self._last_rtp_sn = seq
                self._last_rtp_time_rtp = header.timestamp
                self._last_rtp_time_time = now
            self.packet_count = (self.packet_count + 1) & _UINT32_MASK
            self.octet_count = (self.octet_count + len(payload or b"")) & _UINT32_MASK

    def generate_report(self, now: datetime) -> SenderReport:
        """Build a sender report with the RTP time extrapolated to ``now``."""
        with self._lock:
            elapsed = _elapsed_seconds(now, self._last_rtp_time_time)
            rtp_time = (self._last_rtp_time_rtp + int(elapsed * self.clock_rate)) & _UINT32_MASK
            return SenderReport(
                ssrc=self.ssrc,
                ntp_time=to_ntp(now),
                rtp_time=rtp_time,
                packet_count=self.packet_count,
                octet_count=self.octet_count,
            )