"""An interceptor that resends buffered RTP packets when a NACK asks for them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from rtpinterceptor.nack.send_buffer import NoOpPacketFactory, PacketManager, SendBuffer
from rtpinterceptor.packets import (
    Interceptor,
    StreamInfo,
    TransportLayerNack,
    stream_supports_nack,
)

StreamsFilter = Callable[[StreamInfo], bool]
PacketFactory = Union[PacketManager, NoOpPacketFactory]

DEFAULT_SIZE = 1024


class NackResponderFactory:
    """Creates NackResponderInterceptor instances.

    ``size`` must be a power of two from 1 to 32768. With ``disable_copy`` the
    buffered packets share the caller's header and payload instead of copies.
    """

    def __init__(
        self,
        *,
        size: int = DEFAULT_SIZE,
        log: Optional[logging.Logger] = None,
        disable_copy: bool = False,
        streams_filter: Optional[StreamsFilter] = None,
    ) -> None:
        self.size = size
        self.log = log
        self.disable_copy = disable_copy
        self.streams_filter = streams_filter

    def new_interceptor(self, interceptor_id: str = "") -> NackResponderInterceptor:
        SendBuffer(self.size)  # raises InvalidSizeError for a bad size
        factory: PacketFactory = NoOpPacketFactory() if self.disable_copy else PacketManager()
        return NackResponderInterceptor(
            size=self.size,
            log=self.log,
            packet_factory=factory,
            streams_filter=self.streams_filter,
        )


@dataclass
class _LocalStream:
    send_buffer: SendBuffer
    writer: Callable


class NackResponderInterceptor(Interceptor):
    """Keeps recently sent packets and writes them again when they are NACKed."""

    def __init__(
        self,
        *,
        size: int = DEFAULT_SIZE,
        log: Optional[logging.Logger] = None,
        packet_factory: Optional[PacketFactory] = None,
        streams_filter: Optional[StreamsFilter] = None,
    ) -> None:
        self.size = size
        self.log = log if log is not None else logging.getLogger("nack_responder")
        self.packet_factory = packet_factory if packet_factory is not None else PacketManager()
        self.streams_filter = streams_filter if streams_filter is not None else stream_supports_nack
        self._streams: dict[int, _LocalStream] = {}
        self._lock = threading.Lock()

    def bind_rtcp_reader(self, reader):
        def read(attributes):
            packets, attrs = reader(attributes)
            if attrs is None:
                attrs = {}
            for packet in packets:
                if isinstance(packet, TransportLayerNack):
                    self.resend_packets(packet)
            return packets, attrs

        return read

    def bind_local_stream(self, info: StreamInfo, writer):
        if not self.streams_filter(info):
            return writer

        send_buffer = SendBuffer(self.size)
        with self._lock:
            self._streams[info.ssrc] = _LocalStream(send_buffer, writer)

        def write(header, payload, attributes):
            packet = self.packet_factory.new_packet(
                header,
                payload,
                info.ssrc_retransmission,
                info.payload_type_retransmission,
            )
            send_buffer.add(packet)
            return writer(header, payload, attributes)

        return write

    def unbind_local_stream(self, info: StreamInfo) -> None:
        with self._lock:
            self._streams.pop(info.ssrc, None)

    def resend_packets(self, nack: TransportLayerNack) -> None:
        """Write again every still-buffered packet the NACK names."""
        with self._lock:
            stream = self._streams.get(nack.media_ssrc)
        if stream is None:
            return

        for pair in nack.nacks:
            for seq in pair.packet_list():
                packet = stream.send_buffer.get(seq)
                if packet is None:
                    continue
                try:
                    stream.writer(packet.header, packet.payload, {})
                except Exception as exc:  # one failed resend must not stop the rest
                    self.log.warning("failed resending nacked packet: %s", exc)
                finally:
                    packet.release()