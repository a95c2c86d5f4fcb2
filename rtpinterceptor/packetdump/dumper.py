"""Writes RTP and RTCP packets to text streams from a background thread."""

from __future__ import annotations

import logging
import queue
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

from rtpinterceptor.packets import RTPHeader, RTPPacket

# Decides whether an RTP packet is dumped.
RTPFilter = Callable[[RTPPacket], bool]
# Decides whether a batch of RTCP packets is dumped.
RTCPFilter = Callable[[list], bool]
# Turns an RTP packet and its attributes into the text written for it,
# trailing newline included.
RTPFormatter = Callable[[RTPPacket, dict], str]
# Turns a batch of RTCP packets and its attributes into the text written for it.
RTCPFormatter = Callable[[list, dict], str]


def default_rtp_formatter(packet: RTPPacket, attributes: dict) -> str:
    """The packet's text form followed by a newline."""
    return f"{packet}\n"


def default_rtcp_formatter(packets: list, attributes: dict) -> str:
    """The batch as a bracketed, space separated list followed by a newline."""
    return "[" + " ".join(str(packet) for packet in packets) + "]\n"


def _accept_all(_packet) -> bool:
    return True


@dataclass
class _RTPDump:
    attributes: dict
    packet: RTPPacket


@dataclass
class _RTCPDump:
    attributes: dict
    packets: list


class PacketDumper:
    """Formats logged packets and writes them to the configured streams.

    Streams default to standard output. Packets a filter rejects are skipped.
    Packets logged before ``close`` are all written by the time it returns;
    packets logged afterwards are dropped.
    """

    def __init__(
        self,
        *,
        log: Optional[logging.Logger] = None,
        rtp_stream: Optional[TextIO] = None,
        rtcp_stream: Optional[TextIO] = None,
        rtp_formatter: Optional[RTPFormatter] = None,
        rtcp_formatter: Optional[RTCPFormatter] = None,
        rtp_filter: Optional[RTPFilter] = None,
        rtcp_filter: Optional[RTCPFilter] = None,
    ) -> None:
        self.log = log if log is not None else logging.getLogger("packet_dumper")
        self.rtp_stream = rtp_stream if rtp_stream is not None else sys.stdout
        self.rtcp_stream = rtcp_stream if rtcp_stream is not None else sys.stdout
        self.rtp_formatter = rtp_formatter if rtp_formatter is not None else default_rtp_formatter
        self.rtcp_formatter = (
            rtcp_formatter if rtcp_formatter is not None else default_rtcp_formatter
        )
        self.rtp_filter = rtp_filter if rtp_filter is not None else _accept_all
        self.rtcp_filter = rtcp_filter if rtcp_filter is not None else _accept_all

        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def log_rtp_packet(self, header: RTPHeader, payload: bytes, attributes: dict) -> None:
        """Queue an RTP packet for dumping."""
        packet = RTPPacket(header=header.clone(), payload=bytes(payload or b""))
        self._enqueue(_RTPDump(attributes, packet))

    def log_rtcp_packets(self, packets: list, attributes: dict) -> None:
        """Queue a batch of RTCP packets for dumping."""
        self._enqueue(_RTCPDump(attributes, list(packets)))

    def _enqueue(self, dump) -> None:
        with self._lock:
            if self._closed:
                return
            self._queue.put(dump)

    def _loop(self) -> None:
        while True:
            dump = self._queue.get()
            if dump is None:
                return
            if isinstance(dump, _RTPDump):
                if self.rtp_filter(dump.packet):
                    self._write(
                        self.rtp_stream,
                        self.rtp_formatter(dump.packet, dump.attributes),
                        "could not dump RTP packet %s",
                    )
            elif self.rtcp_filter(dump.packets):
                self._write(
                    self.rtcp_stream,
                    self.rtcp_formatter(dump.packets, dump.attributes),
                    "could not dump RTCP packet %s",
                )

    def _write(self, stream: TextIO, text: str, message: str) -> None:
        try:
            stream.write(text)
        except Exception as exc:  # a broken stream must not stop the dumper
            self.log.error(message, exc)

    def close(self) -> None:
        """Write everything queued so far, then stop the background thread."""
        with self._lock:
            if not self._closed:
                self._closed = True
                self._queue.put(None)
        self._thread.join()

    def __enter__(self) -> PacketDumper:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False