import io

import pytest

from rtpinterceptor.packetdump.dump_interceptors import (
    PacketDumpReceiverFactory,
    PacketDumpSenderFactory,
)
from rtpinterceptor.packets import (
    PictureLossIndication,
    RTPHeader,
    RTPPacket,
    StreamInfo,
)

STREAM = StreamInfo(ssrc=123456, clock_rate=90000)
PLI = PictureLossIndication(sender_ssrc=123, media_ssrc=456)


def _receive_both(interceptor, packet):
    data = packet.marshal()
    rtp_read = interceptor.bind_remote_stream(STREAM, lambda attrs: (data, attrs))
    rtcp_read = interceptor.bind_rtcp_reader(lambda attrs: ([PLI], attrs))
    rtcp_result = rtcp_read({})
    rtp_result = rtp_read({})
    return rtp_result, rtcp_result


def _send_both(interceptor):
    sent = []
    rtcp_write = interceptor.bind_rtcp_writer(lambda packets, attrs: sent.append(packets) or 1)
    rtp_write = interceptor.bind_local_stream(
        STREAM, lambda header, payload, attrs: sent.append(header.sequence_number) or 12
    )
    results = (rtcp_write([PLI], {}), rtp_write(RTPHeader(sequence_number=0), b"", {}))
    return sent, results


def test_receiver_filter_everything_out():
    buf = io.StringIO()
    factory = PacketDumpReceiverFactory(
        rtp_stream=buf,
        rtcp_stream=buf,
        rtp_filter=lambda packet: False,
        rtcp_filter=lambda packets: False,
    )
    interceptor = factory.new_interceptor("")
    assert buf.getvalue() == ""
    _receive_both(interceptor, RTPPacket(header=RTPHeader(sequence_number=0)))
    interceptor.close()
    assert buf.getvalue() == ""


def test_receiver_filter_nothing():
    buf = io.StringIO()
    factory = PacketDumpReceiverFactory(
        rtp_stream=buf,
        rtcp_stream=buf,
        rtp_filter=lambda packet: True,
        rtcp_filter=lambda packets: True,
    )
    interceptor = factory.new_interceptor("")
    packet = RTPPacket(header=RTPHeader(sequence_number=0))
    (data, attrs), (packets, rtcp_attrs) = _receive_both(interceptor, packet)
    interceptor.close()
    assert data == packet.marshal()
    assert packets == [PLI]
    assert attrs == {} and rtcp_attrs == {}
    text = buf.getvalue()
    assert "Sequence Number: 0" in text
    assert "media_ssrc=456" in text


def test_receiver_passes_payload_after_header():
    buf = io.StringIO()
    factory = PacketDumpReceiverFactory(
        rtp_stream=buf,
        rtp_formatter=lambda packet, attrs: packet.payload.hex() + "\n",
    )
    interceptor = factory.new_interceptor("")
    packet = RTPPacket(header=RTPHeader(sequence_number=9, csrc=[1]), payload=b"\x01\x02")
    read = interceptor.bind_remote_stream(STREAM, lambda attrs: (packet.marshal(), attrs))
    read({})
    interceptor.close()
    assert buf.getvalue() == "0102\n"


def test_receiver_fills_missing_attributes():
    buf = io.StringIO()
    interceptor = PacketDumpReceiverFactory(rtcp_stream=buf).new_interceptor("")
    read = interceptor.bind_rtcp_reader(lambda attrs: ([PLI], None))
    packets, attrs = read({})
    interceptor.close()
    assert attrs == {}
    assert packets == [PLI]


def test_receiver_rejects_malformed_rtp():
    interceptor = PacketDumpReceiverFactory(rtp_stream=io.StringIO()).new_interceptor("")
    read = interceptor.bind_remote_stream(STREAM, lambda attrs: (b"\x80\x00", attrs))
    try:
        with pytest.raises(ValueError):
            read({})
    finally:
        interceptor.close()


def test_sender_filter_everything_out():
    buf = io.StringIO()
    factory = PacketDumpSenderFactory(
        rtp_stream=buf,
        rtcp_stream=buf,
        rtp_filter=lambda packet: False,
        rtcp_filter=lambda packets: False,
    )
    interceptor = factory.new_interceptor("")
    assert buf.getvalue() == ""
    sent, _ = _send_both(interceptor)
    interceptor.close()
    assert sent == [[PLI], 0]
    assert buf.getvalue() == ""


def test_sender_filter_nothing():
    buf = io.StringIO()
    factory = PacketDumpSenderFactory(
        rtp_stream=buf,
        rtcp_stream=buf,
        rtp_filter=lambda packet: True,
        rtcp_filter=lambda packets: True,
    )
    interceptor = factory.new_interceptor("")
    sent, results = _send_both(interceptor)
    interceptor.close()
    assert results == (1, 12)
    assert sent == [[PLI], 0]
    text = buf.getvalue()
    assert "Sequence Number: 0" in text
    assert "media_ssrc=456" in text


def test_sender_close_stops_dumping():
    buf = io.StringIO()
    interceptor = PacketDumpSenderFactory(rtp_stream=buf, rtcp_stream=buf).new_interceptor("")
    interceptor.close()
    sent, results = _send_both(interceptor)
    assert results == (1, 12)
    assert buf.getvalue() == ""