"""Interceptors that dump incoming or outgoing RTP and RTCP packets."""

from __future__ import annotations

from rtpinterceptor.packetdump.dumper import PacketDumper
from rtpinterceptor.packets import Interceptor, StreamInfo, parse_rtp_packet


class PacketDumpReceiverFactory:
    """Creates PacketDumpReceiverInterceptor instances.

    The keyword options are those of PacketDumper.
    """

    def __init__(self, **options) -> None:
        self.options = options

    def new_interceptor(self, interceptor_id: str = "") -> PacketDumpReceiverInterceptor:
        return PacketDumpReceiverInterceptor(PacketDumper(**self.options))


class PacketDumpReceiverInterceptor(Interceptor):
    """Dumps incoming RTP and RTCP packets."""

    def __init__(self, dumper: PacketDumper) -> None:
        self.dumper = dumper

    def bind_remote_stream(self, info: StreamInfo, reader):
        def read(attributes):
            data, attrs = reader(attributes)
            if attrs is None:
                attrs = {}
            header = parse_rtp_packet(data).header
            self.dumper.log_rtp_packet(header, data[header.marshal_size():], attrs)
            return data, attrs

        return read

    def bind_rtcp_reader(self, reader):
        def read(attributes):
            packets, attrs = reader(attributes)
            if attrs is None:
                attrs = {}
            self.dumper.log_rtcp_packets(packets, attrs)
            return packets, attrs

        return read

    def close(self) -> None:
        self.dumper.close()


class PacketDumpSenderFactory:
    """Creates PacketDumpSenderInterceptor instances.

    The keyword options are those of PacketDumper.
    """

    def __init__(self, **options) -> None:
        self.options = options

    def new_interceptor(self, interceptor_id: str = "") -> PacketDumpSenderInterceptor:
        return PacketDumpSenderInterceptor(PacketDumper(**self.options))


class PacketDumpSenderInterceptor(Interceptor):
    """Dumps outgoing RTP and RTCP packets."""

    def __init__(self, dumper: PacketDumper) -> None:
        self.dumper = dumper

    def bind_rtcp_writer(self, writer):
        def write(packets, attributes):
            self.dumper.log_rtcp_packets(packets, attributes)
            return writer(packets, attributes)

        return write

    def bind_local_stream(self, info: StreamInfo, writer):
        def write(header, payload, attributes):
            self.dumper.log_rtp_packet(header, payload, attributes)
            return writer(header, payload, attributes)

        return write

    def close(self) -> None:
        self.dumper.close()