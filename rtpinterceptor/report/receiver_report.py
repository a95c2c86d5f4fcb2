"""An interceptor that sends RTCP receiver reports for remote streams."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from rtpinterceptor.packets import Interceptor, SenderReport, StreamInfo, parse_rtp_packet
from rtpinterceptor.report.receiver_stream import ReceiverStream

Clock = Callable[[], datetime]

DEFAULT_INTERVAL = 1.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReceiverReportFactory:
    """Creates ReceiverReportInterceptor instances.

    ``interval`` is the time in seconds between reports and ``now`` replaces
    the wall clock.
    """

    def __init__(
        self,
        *,
        interval: float = DEFAULT_INTERVAL,
        log: Optional[logging.Logger] = None,
        now: Optional[Clock] = None,
    ) -> None:
        self.interval = interval
        self.log = log
        self.now = now

    def new_interceptor(self, interceptor_id: str = "") -> ReceiverReportInterceptor:
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        return ReceiverReportInterceptor(interval=self.interval, log=self.log, now=self.now)


class ReceiverReportInterceptor(Interceptor):
    """Collects reception statistics and periodically writes receiver reports."""

    def __init__(
        self,
        *,
        interval: float = DEFAULT_INTERVAL,
        log: Optional[logging.Logger] = None,
        now: Optional[Clock] = None,
    ) -> None:
        self.interval = interval
        self.log = log if log is not None else logging.getLogger("receiver_interceptor")
        self.now = now if now is not None else _utc_now
        self._streams: dict[int, ReceiverStream] = {}
        self._streams_lock = threading.Lock()
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

    def _loop(self, writer) -> None:
        while not self._closed.wait(self.interval):
            self.write_reports(writer)

    def write_reports(self, writer) -> None:
        """Write one receiver report per bound stream."""
        now = self.now()
        with self._streams_lock:
            streams = list(self._streams.values())
        for stream in streams:
            try:
                writer([stream.generate_report(now)], {})
            except Exception as exc:  # a failed send must not stop the other reports
                self.log.warning("failed sending: %s", exc)

    def bind_remote_stream(self, info: StreamInfo, reader):
        stream = ReceiverStream(info.ssrc, info.clock_rate)
        with self._streams_lock:
            self._streams[info.ssrc] = stream

        def read(attributes):
            data, attrs = reader(attributes)
            if attrs is None:
                attrs = {}
            header = parse_rtp_packet(data).header
            stream.process_rtp(self.now(), header)
            return data, attrs

        return read

    def unbind_remote_stream(self, info: StreamInfo) -> None:
        with self._streams_lock:
            self._streams.pop(info.ssrc, None)

    def bind_rtcp_reader(self, reader):
        def read(attributes):
            packets, attrs = reader(attributes)
            if attrs is None:
                attrs = {}
            for packet in packets:
                if not isinstance(packet, SenderReport):
                    continue
                with self._streams_lock:
                    stream = self._streams.get(packet.ssrc)
                if stream is not None:
                    stream.process_sender_report(self.now(), packet)
            return packets, attrs

        return read

    def close(self) -> None:
        with self._lock:
            self._closed.set()
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()