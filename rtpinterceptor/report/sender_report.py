"""An interceptor that sends RTCP sender reports for local streams."""

from __future__ import annotations

import abc
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from rtpinterceptor.packets import Interceptor, StreamInfo
from rtpinterceptor.report.sender_stream import SenderStream

Clock = Callable[[], datetime]

DEFAULT_INTERVAL = 1.0
# Upper bound on how long the report loop blocks before re-checking for close.
_POLL_INTERVAL = 0.1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Ticker(abc.ABC):
    """A source of periodic ticks that the report loop waits on."""

    @abc.abstractmethod
    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the next tick; True if one came, False on timeout or stop."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop ticking; pending and future waits return False."""


TickerFactory = Callable[[float], Ticker]


class IntervalTicker(Ticker):
    """Ticks every ``interval`` seconds; ticks missed by a slow waiter are dropped."""

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._next_tick = time.monotonic() + interval

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            deadline = self._next_tick
        remaining = deadline - time.monotonic()
        if timeout is not None and timeout < remaining:
            self._stopped.wait(timeout)
            return False
        if self._stopped.wait(max(0.0, remaining)):
            return False
        now = time.monotonic()
        with self._lock:
            while self._next_tick <= now:
                self._next_tick += self.interval
        return True

    def stop(self) -> None:
        self._stopped.set()


class SenderReportFactory:
    """Creates SenderReportInterceptor instances.

    ``interval`` is the time in seconds between reports, ``now`` replaces the
    wall clock, ``ticker_factory`` replaces the interval ticker and
    ``use_latest_packet`` makes every packet, even an out-of-order one, move
    the RTP clock. ``loop_started`` is set once a report loop is running.
    """

    def __init__(
        self,
        *,
        interval: float = DEFAULT_INTERVAL,
        log: Optional[logging.Logger] = None,
        now: Optional[Clock] = None,
        ticker_factory: Optional[TickerFactory] = None,
        use_latest_packet: bool = False,
        loop_started: Optional[threading.Event] = None,
    ) -> None:
        self.interval = interval
        self.log = log
        self.now = now
        self.ticker_factory = ticker_factory
        self.use_latest_packet = use_latest_packet
        self.loop_started = loop_started

    def new_interceptor(self, interceptor_id: str = "") -> SenderReportInterceptor:
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        return SenderReportInterceptor(
            interval=self.interval,
            log=self.log,
            now=self.now,
            ticker_factory=self.ticker_factory,
            use_latest_packet=self.use_latest_packet,
            loop_started=self.loop_started,
        )


class SenderReportInterceptor(Interceptor):
    """Counts outgoing RTP per stream and periodically writes sender reports."""

    def __init__(
        self,
        *,
        interval: float = DEFAULT_INTERVAL,
        log: Optional[logging.Logger] = None,
        now: Optional[Clock] = None,
        ticker_factory: Optional[TickerFactory] = None,
        use_latest_packet: bool = False,
        loop_started: Optional[threading.Event] = None,
    ) -> None:
        self.interval = interval
        self.log = log if log is not None else logging.getLogger("sender_interceptor")
        self.now = now if now is not None else _utc_now
        self.ticker_factory = ticker_factory if ticker_factory is not None else IntervalTicker
        self.use_latest_packet = use_latest_packet
        self._loop_started = loop_started
        self._streams: dict[int, SenderStream] = {}
        self._streams_lock = threading.Lock()
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []
        self._tickers: list[Ticker] = []

    def bind_rtcp_writer(self, writer):
        with self._lock:
            if self._closed.is_set():
                return writer
            thread = threading.Thread(target=self._loop, args=(writer,), daemon=True)
            self._threads.append(thread)
            thread.start()
        return writer

    def _loop(self, writer) -> None:
        ticker = self.ticker_factory(self.interval)
        with self._lock:
            if self._closed.is_set():
                ticker.stop()
                return
            self._tickers.append(ticker)
        try:
            if self._loop_started is not None:
                self._loop_started.set()
            while not self._closed.is_set():
                if ticker.wait(_POLL_INTERVAL) and not self._closed.is_set():
                    self.write_reports(writer)
        finally:
            ticker.stop()

    def write_reports(self, writer) -> None:
        """Write one sender report per bound stream."""
        now = self.now()
        with self._streams_lock:
            streams = list(self._streams.values())
        for stream in streams:
            try:
                writer([stream.generate_report(now)], {})
            except Exception as exc:  # a failed send must not stop the other reports
                self.log.warning("failed sending: %s", exc)

    def bind_local_stream(self, info: StreamInfo, writer):
        stream = SenderStream(info.ssrc, info.clock_rate, self.use_latest_packet)
        with self._streams_lock:
            self._streams[info.ssrc] = stream

        def write(header, payload, attributes):
            stream.process_rtp(self.now(), header, payload)
            return writer(header, payload, attributes)

        return write

    def unbind_local_stream(self, info: StreamInfo) -> None:
        with self._streams_lock:
            self._streams.pop(info.ssrc, None)

    def close(self) -> None:
        with self._lock:
            self._closed.set()
            threads, self._threads = self._threads, []
            tickers, self._tickers = self._tickers, []
        for ticker in tickers:
            ticker.stop()
        for thread in threads:
            thread.join()