"""An interceptor that watches incoming RTP and sends NACKs for missing packets."""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Optional

from rtpinterceptor.nack.receive_log import ReceiveLog
from rtpinterceptor.packets import (
    Interceptor,
    StreamInfo,
    TransportLayerNack,
    nack_pairs_from_sequence_numbers,
    parse_rtp_packet,
    stream_supports_nack,
)

StreamsFilter = Callable[[StreamInfo], bool]

DEFAULT_SIZE = 512
DEFAULT_INTERVAL = 0.1


class NackGeneratorFactory:
    """Creates NackGeneratorInterceptor instances.

    ``size`` must be a power of two from 64 to 32768. ``skip_last_n`` leaves the
    newest packets out of the check, ``max_nacks_per_packet`` limits how often a
    missing packet is requested (0 means unlimited) and ``interval`` is the time
    in seconds between NACK rounds.
    """

    def __init__(
        self,
        *,
        size: int = DEFAULT_SIZE,
        skip_last_n: int = 0,
        max_nacks_per_packet: int = 0,
        interval: float = DEFAULT_INTERVAL,
        log: Optional[logging.Logger] = None,
        streams_filter: Optional[StreamsFilter] = None,
    ) -> None:
        self.size = size
        self.skip_last_n = skip_last_n
        self.max_nacks_per_packet = max_nacks_per_packet
        self.interval = interval
        self.log = log
        self.streams_filter = streams_filter

    def new_interceptor(self, interceptor_id: str = "") -> NackGeneratorInterceptor:
        ReceiveLog(self.size)  # raises InvalidSizeError for a bad size
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        return NackGeneratorInterceptor(
            size=self.size,
            skip_last_n=self.skip_last_n,
            max_nacks_per_packet=self.max_nacks_per_packet,
            interval=self.interval,
            log=self.log,
            streams_filter=self.streams_filter,
        )


class NackGeneratorInterceptor(Interceptor):
    """Records received sequence numbers per stream and periodically sends NACKs."""

    def __init__(
        self,
        *,
        size: int = DEFAULT_SIZE,
        skip_last_n: int = 0,
        max_nacks_per_packet: int = 0,
        interval: float = DEFAULT_INTERVAL,
        log: Optional[logging.Logger] = None,
        streams_filter: Optional[StreamsFilter] = None,
    ) -> None:
        self.size = size
        self.skip_last_n = skip_last_n
        self.max_nacks_per_packet = max_nacks_per_packet
        self.interval = interval
        self.log = log if log is not None else logging.getLogger("nack_generator")
        self.streams_filter = streams_filter if streams_filter is not None else stream_supports_nack
        self._receive_logs: dict[int, ReceiveLog] = {}
        self._nack_counts: dict[int, dict[int, int]] = {}
        self._logs_lock = threading.Lock()
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []

    def bind_rtcp_writer(self, writer):
        with self._lock:
            if self._closed.is_set():
                return writer
            thread = threading.Thread(target=self._loop, args=(writer,), daemon=True)
            self._threads.append(thread)
            thread.start()
        return writer

    def bind_remote_stream(self, info: StreamInfo, reader):
        if not self.streams_filter(info):
            return reader

        receive_log = ReceiveLog(self.size)
        with self._logs_lock:
            self._receive_logs[info.ssrc] = receive_log

        def read(attributes):
            data, attrs = reader(attributes)
            if attrs is None:
                attrs = {}
            header = parse_rtp_packet(data).header
            receive_log.add(header.sequence_number)
            return data, attrs

        return read

    def unbind_remote_stream(self, info: StreamInfo) -> None:
        with self._logs_lock:
            self._receive_logs.pop(info.ssrc, None)

    def generate_nacks(self, sender_ssrc: int) -> list[TransportLayerNack]:
        """Build one NACK per stream that has missing packets still worth requesting."""
        nacks = []
        with self._logs_lock:
            for ssrc, receive_log in self._receive_logs.items():
                missing = receive_log.missing_seq_numbers(self.skip_last_n)

                if not missing or ssrc not in self._nack_counts:
                    self._nack_counts[ssrc] = {}
                if not missing:
                    continue
                counts = self._nack_counts[ssrc]

                if self.max_nacks_per_packet > 0:
                    filtered = []
                    for seq in missing:
                        if counts.get(seq, 0) < self.max_nacks_per_packet:
                            filtered.append(seq)
                        counts[seq] = (counts.get(seq, 0) + 1) & 0xFFFF
                else:
                    filtered = missing

                still_missing = set(missing)
                for seq in [seq for seq in counts if seq not in still_missing]:
                    del counts[seq]

                if not filtered:
                    continue

                nacks.append(
                    TransportLayerNack(
                        sender_ssrc=sender_ssrc,
                        media_ssrc=ssrc,
                        nacks=nack_pairs_from_sequence_numbers(filtered),
                    )
                )
        return nacks

    def _loop(self, writer) -> None:
        sender_ssrc = random.getrandbits(32)
        while not self._closed.wait(self.interval):
            for nack in self.generate_nacks(sender_ssrc):
                try:
                    writer([nack], {})
                except Exception as exc:  # a failed send must not stop the loop
                    self.log.warning("failed sending nack: %s", exc)

    def close(self) -> None:
        with self._lock:
            self._closed.set()
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()