import pytest

from rtpinterceptor.nack.nack_responder import NackResponderFactory
from rtpinterceptor.nack.receive_log import InvalidSizeError
from rtpinterceptor.nack.send_buffer import NoOpPacketFactory, PacketManager
from rtpinterceptor.packets import (
    NackPair,
    PictureLossIndication,
    RTCPFeedback,
    RTPHeader,
    StreamInfo,
    TransportLayerNack,
)


def _info(ssrc, **kwargs):
    return StreamInfo(ssrc=ssrc, rtcp_feedback=[RTCPFeedback(type="nack")], **kwargs)


class _Stream:
    def __init__(self, interceptor, info):
        self.written = []
        self.write = interceptor.bind_local_stream(info, self._record)
        self.incoming = []
        self.read_rtcp = interceptor.bind_rtcp_reader(lambda attrs: (self.incoming, attrs))

    def _record(self, header, payload, attributes):
        self.written.append(
            (header.sequence_number, header.ssrc, header.payload_type, bytes(payload or b""))
        )
        return len(payload or b"")

    def receive_rtcp(self, packets):
        self.incoming = packets
        return self.read_rtcp({})


def _nack(media_ssrc, packet_id=11, lost=0b1011):
    return TransportLayerNack(
        media_ssrc=media_ssrc,
        sender_ssrc=2,
        nacks=[NackPair(packet_id=packet_id, lost_packets=lost)],
    )


@pytest.mark.parametrize("disable_copy", [False, True])
def test_resends_nacked_packets(disable_copy):
    interceptor = NackResponderFactory(size=8, disable_copy=disable_copy).new_interceptor("")
    stream = _Stream(interceptor, _info(1))
    for seq in [10, 11, 12, 14, 15]:
        stream.write(RTPHeader(sequence_number=seq), b"", {})
    assert [w[0] for w in stream.written] == [10, 11, 12, 14, 15]

    # asks for 11, 12, 13, 15; 13 was never sent
    stream.receive_rtcp([_nack(1)])
    assert [w[0] for w in stream.written[5:]] == [11, 12, 15]


def test_reader_returns_packets_and_attributes():
    interceptor = NackResponderFactory(size=8).new_interceptor("")
    stream = _Stream(interceptor, _info(1))
    pli = PictureLossIndication(sender_ssrc=1, media_ssrc=2)
    packets, attrs = stream.receive_rtcp([pli])
    assert packets == [pli]
    assert attrs == {}
    assert stream.written == []


def test_invalid_size():
    with pytest.raises(InvalidSizeError):
        NackResponderFactory(size=5).new_interceptor("")


def test_disable_copy_selects_noop_factory():
    header = RTPHeader(sequence_number=77)
    payload = b"data"

    no_copy = NackResponderFactory(size=8, disable_copy=True).new_interceptor("id")
    assert isinstance(no_copy.packet_factory, NoOpPacketFactory)
    shared = no_copy.packet_factory.new_packet(header, payload, 0, 0)
    assert shared.header is header
    assert shared.payload is payload

    default = NackResponderFactory(size=8).new_interceptor("id")
    assert isinstance(default.packet_factory, PacketManager)
    copied = default.packet_factory.new_packet(header, payload, 0, 0)
    assert copied.header is not header
    assert copied.header.sequence_number == 77
    assert copied.payload == b"data"


def test_many_packets_with_losses():
    interceptor = NackResponderFactory(size=32768).new_interceptor("")
    stream = _Stream(interceptor, _info(1))
    resent = []
    for seq in range(500):
        stream.write(RTPHeader(sequence_number=seq), b"", {})
        if seq % 4 == 0:
            before = len(stream.written)
            stream.receive_rtcp([_nack(1, packet_id=seq, lost=0)])
            resent.extend(w[0] for w in stream.written[before:])
    assert resent == list(range(0, 500, 4))


def test_stream_filter():
    interceptor = NackResponderFactory(
        size=8, streams_filter=lambda info: info.ssrc != 1
    ).new_interceptor("")
    without_nacks = _Stream(interceptor, _info(1))
    with_nacks = _Stream(interceptor, _info(2))
    for seq in [10, 11, 12, 14, 15]:
        without_nacks.write(RTPHeader(sequence_number=seq, ssrc=1), b"", {})
        with_nacks.write(RTPHeader(sequence_number=seq, ssrc=2), b"", {})
    assert len(without_nacks.written) == 5
    assert len(with_nacks.written) == 5

    without_nacks.receive_rtcp([_nack(1)])
    with_nacks.receive_rtcp([_nack(2)])
    assert len(without_nacks.written) == 5
    assert [w[0] for w in with_nacks.written[5:]] == [11, 12, 15]


def test_rfc4588_retransmission():
    interceptor = NackResponderFactory().new_interceptor("")
    stream = _Stream(
        interceptor, _info(1, ssrc_retransmission=2, payload_type_retransmission=2)
    )
    for seq in [10, 11, 12, 14, 15]:
        stream.write(RTPHeader(sequence_number=seq), b"", {})
    assert [w[0] for w in stream.written] == [10, 11, 12, 14, 15]

    stream.receive_rtcp([_nack(1)])
    resent = stream.written[5:]
    assert len(resent) == 3
    for (seq, ssrc, payload_type, payload), expected in zip(resent, [11, 12, 15]):
        assert ssrc == 2
        assert payload_type == 2
        assert int.from_bytes(payload[:2], "big") == expected


def test_unbind_stops_resending():
    interceptor = NackResponderFactory(size=8).new_interceptor("")
    info = _info(1)
    stream = _Stream(interceptor, info)
    for seq in [10, 11, 12]:
        stream.write(RTPHeader(sequence_number=seq), b"", {})
    interceptor.unbind_local_stream(info)
    stream.receive_rtcp([_nack(1)])
    assert len(stream.written) == 3


def test_failed_resend_is_logged_and_continues(caplog):
    interceptor = NackResponderFactory(size=8).new_interceptor("")
    calls = []

    def failing_writer(header, payload, attributes):
        calls.append(header.sequence_number)
        if len(calls) > 3:
            raise OSError("boom")
        return 0

    write = interceptor.bind_local_stream(_info(1), failing_writer)
    for seq in [10, 11, 12]:
        write(RTPHeader(sequence_number=seq), b"", {})
    with caplog.at_level("WARNING", logger="nack_responder"):
        interceptor.resend_packets(_nack(1, packet_id=10, lost=0b11))
    assert calls == [10, 11, 12, 10, 11, 12]
    assert "failed resending nacked packet" in caplog.text