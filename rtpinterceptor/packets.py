"""RTP and RTCP packet types, stream descriptions and the interceptor interface."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Union

RTP_VERSION = 2
_FIXED_HEADER_SIZE = 12
_HEADER_STRUCT = struct.Struct("!BBHII")
_MAX_CSRC = 15

Attributes = dict
# An RTP reader returns the raw bytes of one packet with its attributes.
RTPReader = Callable[[Attributes], "tuple[bytes, Attributes]"]
# An RTP writer sends one packet and returns the number of bytes written.
RTPWriter = Callable[["RTPHeader", bytes, Attributes], int]
# An RTCP reader returns one batch of parsed RTCP packets with its attributes.
RTCPReader = Callable[[Attributes], "tuple[list[Any], Attributes]"]
# An RTCP writer sends one batch of RTCP packets.
RTCPWriter = Callable[[list, Attributes], int]


def _padded_len(length: int) -> int:
    return (length + 3) // 4 * 4


@dataclass
class RTPHeader:
    """The fixed RTP header plus CSRC list and an optional extension."""

    version: int = RTP_VERSION
    padding: bool = False
    extension: bool = False
    marker: bool = False
    payload_type: int = 0
    sequence_number: int = 0
    timestamp: int = 0
    ssrc: int = 0
    csrc: list[int] = field(default_factory=list)
    extension_profile: int = 0
    extension_payload: bytes = b""

    def marshal_size(self) -> int:
        """Number of bytes the header occupies on the wire."""
        size = _FIXED_HEADER_SIZE + 4 * len(self.csrc)
        if self.extension:
            size += 4 + _padded_len(len(self.extension_payload))
        return size

    def clone(self) -> RTPHeader:
        """Return an independent copy of the header."""
        return replace(self, csrc=list(self.csrc))

    def _marshal(self) -> bytes:
        if len(self.csrc) > _MAX_CSRC:
            raise ValueError(f"too many CSRC entries: {len(self.csrc)}")
        first = (
            (self.version & 0x3) << 6
            | int(self.padding) << 5
            | int(self.extension) << 4
            | len(self.csrc)
        )
        second = int(self.marker) << 7 | (self.payload_type & 0x7F)
        parts = [
            _HEADER_STRUCT.pack(
                first,
                second,
                self.sequence_number & 0xFFFF,
                self.timestamp & 0xFFFFFFFF,
                self.ssrc & 0xFFFFFFFF,
            )
        ]
        parts.extend(struct.pack("!I", c & 0xFFFFFFFF) for c in self.csrc)
        if self.extension:
            padded = _padded_len(len(self.extension_payload))
            parts.append(struct.pack("!HH", self.extension_profile & 0xFFFF, padded // 4))
            parts.append(self.extension_payload.ljust(padded, b"\x00"))
        return b"".join(parts)


@dataclass
class RTPPacket:
    """An RTP packet: header, payload and trailing padding size."""

    header: RTPHeader = field(default_factory=RTPHeader)
    payload: bytes = b""
    padding_size: int = 0

    def marshal(self) -> bytes:
        """Serialize the packet to its wire form."""
        data = self.header._marshal() + bytes(self.payload)
        if self.header.padding and self.padding_size > 0:
            if self.padding_size > 255:
                raise ValueError(f"padding size too large: {self.padding_size}")
            data += b"\x00" * (self.padding_size - 1) + bytes([self.padding_size])
        return data

    def __str__(self) -> str:
        h = self.header
        return (
            "RTP PACKET:\n"
            f"\tVersion: {h.version}\n"
            f"\tMarker: {str(h.marker).lower()}\n"
            f"\tPayload Type: {h.payload_type}\n"
            f"\tSequence Number: {h.sequence_number}\n"
            f"\tTimestamp: {h.timestamp}\n"
            f"\tSSRC: {h.ssrc} ({h.ssrc:x})\n"
            f"\tPayload Length: {len(self.payload)}\n"
        )


def parse_rtp_packet(data: bytes) -> RTPPacket:
    """Parse wire bytes into an RTPPacket; raises ValueError on malformed input."""
    data = bytes(data)
    if len(data) < _FIXED_HEADER_SIZE:
        raise ValueError(f"RTP header too short: {len(data)} bytes")
    first, second, seq, ts, ssrc = _HEADER_STRUCT.unpack_from(data)
    csrc_count = first & 0x0F
    offset = _FIXED_HEADER_SIZE
    if len(data) < offset + 4 * csrc_count:
        raise ValueError("RTP header too short for CSRC list")
    csrc = [struct.unpack_from("!I", data, offset + 4 * n)[0] for n in range(csrc_count)]
    offset += 4 * csrc_count

    header = RTPHeader(
        version=first >> 6,
        padding=bool(first & 0x20),
        extension=bool(first & 0x10),
        marker=bool(second & 0x80),
        payload_type=second & 0x7F,
        sequence_number=seq,
        timestamp=ts,
        ssrc=ssrc,
        csrc=csrc,
    )
    if header.extension:
        if len(data) < offset + 4:
            raise ValueError("RTP header too short for extension")
        profile, words = struct.unpack_from("!HH", data, offset)
        offset += 4
        end = offset + 4 * words
        if len(data) < end:
            raise ValueError("RTP extension exceeds packet length")
        header.extension_profile = profile
        header.extension_payload = data[offset:end]
        offset = end

    end = len(data)
    padding_size = 0
    if header.padding:
        padding_size = data[-1] if end > offset else 0
        if padding_size == 0 or padding_size > end - offset:
            raise ValueError("invalid RTP padding")
        end -= padding_size
    return RTPPacket(header=header, payload=data[offset:end], padding_size=padding_size)


@dataclass
class RTCPFeedback:
    """An RTCP feedback mechanism negotiated for a stream."""

    type: str = ""
    parameter: str = ""


@dataclass
class StreamInfo:
    """Description of a media stream handed to interceptors."""

    id: str = ""
    attributes: dict = field(default_factory=dict)
    ssrc: int = 0
    ssrc_retransmission: int = 0
    ssrc_forward_error_correction: int = 0
    payload_type: int = 0
    payload_type_retransmission: int = 0
    payload_type_forward_error_correction: int = 0
    rtp_header_extensions: list = field(default_factory=list)
    mime_type: str = ""
    clock_rate: int = 0
    channels: int = 0
    sdp_fmtp_line: str = ""
    rtcp_feedback: list[RTCPFeedback] = field(default_factory=list)


@dataclass
class PictureLossIndication:
    """RTCP PLI feedback message."""

    sender_ssrc: int = 0
    media_ssrc: int = 0


@dataclass
class NackPair:
    """One packet id plus a bitmap of the 16 packets that follow it."""

    packet_id: int = 0
    lost_packets: int = 0

    def packet_list(self) -> list[int]:
        """All sequence numbers this pair reports as lost."""
        result = [self.packet_id]
        result.extend(
            (self.packet_id + bit + 1) & 0xFFFF
            for bit in range(16)
            if self.lost_packets & (1 << bit)
        )
        return result


def nack_pairs_from_sequence_numbers(sequence_numbers) -> list[NackPair]:
    """Group ascending sequence numbers into NACK pairs."""
    numbers = list(sequence_numbers)
    if not numbers:
        return []
    pairs = []
    current = NackPair(packet_id=numbers[0])
    for number in numbers[1:]:
        diff = (number - current.packet_id) & 0xFFFF
        if diff > 16:
            pairs.append(current)
            current = NackPair(packet_id=number)
        elif diff:
            current.lost_packets |= 1 << (diff - 1)
    pairs.append(current)
    return pairs


@dataclass
class TransportLayerNack:
    """RTCP generic NACK feedback message."""

    sender_ssrc: int = 0
    media_ssrc: int = 0
    nacks: list[NackPair] = field(default_factory=list)


@dataclass
class ReceptionReport:
    """One report block inside a sender or receiver report."""

    ssrc: int = 0
    fraction_lost: int = 0
    total_lost: int = 0
    last_sequence_number: int = 0
    jitter: int = 0
    last_sender_report: int = 0
    delay: int = 0


@dataclass
class SenderReport:
    """RTCP sender report."""

    ssrc: int = 0
    ntp_time: int = 0
    rtp_time: int = 0
    packet_count: int = 0
    octet_count: int = 0
    reports: list[ReceptionReport] = field(default_factory=list)


@dataclass
class ReceiverReport:
    """RTCP receiver report."""

    ssrc: int = 0
    reports: list[ReceptionReport] = field(default_factory=list)


RTCPPacket = Union[
    PictureLossIndication, TransportLayerNack, SenderReport, ReceiverReport
]


class Interceptor:
    """Base interceptor: every binding passes its reader or writer through unchanged."""

    def bind_rtcp_reader(self, reader):
        return reader

    def bind_rtcp_writer(self, writer):
        return writer

    def bind_local_stream(self, info, writer):
        return writer

    def unbind_local_stream(self, info):
        return None

    def bind_remote_stream(self, info, reader):
        return reader

    def unbind_remote_stream(self, info):
        return None

    def close(self):
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def stream_supports_pli(info: StreamInfo) -> bool:
    """True if the stream negotiated "nack pli" feedback."""
    return any(fb.type == "nack" and fb.parameter == "pli" for fb in info.rtcp_feedback)


def stream_supports_nack(info: StreamInfo) -> bool:
    """True if the stream negotiated plain "nack" feedback."""
    return any(fb.type == "nack" and fb.parameter == "" for fb in info.rtcp_feedback)