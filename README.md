# rtpinterceptor

Building blocks that sit in an RTP/RTCP media pipeline and observe or
rewrite the packets flowing through it. Each interceptor wraps plain
callables, so it can be placed in front of any transport.

## Readers and writers

Interceptors work on four kinds of callables:

- RTP reader: `reader(attributes) -> (bytes, attributes)`, returning one
  packet in wire form.
- RTP writer: `writer(header, payload, attributes) -> int`.
- RTCP reader: `reader(attributes) -> (packets, attributes)`, returning a
  list of already parsed RTCP packet objects.
- RTCP writer: `writer(packets, attributes) -> int`.

`rtpinterceptor.packets.Interceptor` is the base class. Its hooks
`bind_rtcp_reader`, `bind_rtcp_writer`, `bind_local_stream`,
`bind_remote_stream` return the callable they are given, wrapped or
unchanged; `unbind_local_stream`, `unbind_remote_stream` and `close` clean
up. Interceptors are also context managers that call `close()` on exit.

## What is included

- `rtpinterceptor.packets` – `RTPHeader`, `RTPPacket` (with `marshal()`)
  and `parse_rtp_packet()`; the RTCP packet types `PictureLossIndication`,
  `TransportLayerNack` with `NackPair` and
  `nack_pairs_from_sequence_numbers()`, `SenderReport`, `ReceiverReport`
  and `ReceptionReport`; `StreamInfo` and `RTCPFeedback`; and the helpers
  `stream_supports_nack()` and `stream_supports_pli()`.
- `rtpinterceptor.jitterbuffer.priority_queue` – `PriorityQueue`, packets
  kept in sequence-number order.
- `rtpinterceptor.jitterbuffer.jitter_buffer` – `JitterBuffer`, which
  orders packets and only starts emitting after `min_packet_count` packets
  (50 by default). It reports `Event`s to listeners registered with
  `listen()`, keeps `Stats`, and raises `PopWhileBufferingError`,
  `BufferUnderrunError` or `NotFoundError` when a packet cannot be given.
- `rtpinterceptor.jitterbuffer.jitter_interceptor` –
  `JitterBufferInterceptorFactory` puts a jitter buffer in front of a
  remote stream; reads raise `PopWhileBufferingError` until playback begins.
- `rtpinterceptor.nack.receive_log` – `ReceiveLog`, a window of received
  sequence numbers that lists the missing ones.
- `rtpinterceptor.nack.send_buffer` – `SendBuffer` of reference-counted
  `RetainablePacket`s, made by `PacketManager` (private copies, rewritten
  as RFC 4588 retransmissions when an RTX SSRC and payload type are given)
  or `NoOpPacketFactory` (no copies).
- `rtpinterceptor.nack.nack_generator` – `NackGeneratorFactory` records
  incoming sequence numbers and periodically writes `TransportLayerNack`s
  for missing packets. Options: `size`, `skip_last_n`,
  `max_nacks_per_packet`, `interval`, `log`, `streams_filter`.
- `rtpinterceptor.nack.nack_responder` – `NackResponderFactory` buffers
  sent packets and writes them again when a NACK names them. Options:
  `size`, `log`, `disable_copy`, `streams_filter`.
- `rtpinterceptor.report.receiver_stream` / `sender_stream` – per-stream
  statistics (`ReceiverStream`, `SenderStream`) and `to_ntp()`.
- `rtpinterceptor.report.receiver_report` – `ReceiverReportFactory`
  writes receiver reports (loss, jitter, delay since last sender report) on
  an interval. Options: `interval`, `log`, `now`.
- `rtpinterceptor.report.sender_report` – `SenderReportFactory` writes
  sender reports on an interval. Options: `interval`, `log`, `now`,
  `ticker_factory` (a `Ticker`, `IntervalTicker` by default),
  `use_latest_packet`, `loop_started`.
- `rtpinterceptor.packetdump.dumper` – `PacketDumper` writes packets to
  text streams (standard output by default) from a background thread, with
  filters and formatters (`default_rtp_formatter`,
  `default_rtcp_formatter`).
- `rtpinterceptor.packetdump.dump_interceptors` –
  `PacketDumpSenderFactory` and `PacketDumpReceiverFactory` dump outgoing
  or incoming packets; their keyword options are those of `PacketDumper`.

Every factory has `new_interceptor(interceptor_id="")`; interval-driven
interceptors start their loop in `bind_rtcp_writer` and stop it in
`close()`. Report interceptors also offer `write_reports(writer)` and the
NACK generator `generate_nacks(sender_ssrc)` to do one round by hand.

## Examples

```python
from rtpinterceptor.jitterbuffer.jitter_buffer import JitterBuffer
from rtpinterceptor.packets import RTPHeader, RTPPacket

buffer = JitterBuffer(min_packet_count=2)
for seq in (100, 101):
    buffer.push(RTPPacket(RTPHeader(sequence_number=seq), b"\x00"))

print(buffer.pop().header.sequence_number)  # 100
```

```python
from rtpinterceptor.nack.nack_responder import NackResponderFactory
from rtpinterceptor.packets import (
    NackPair, RTCPFeedback, RTPHeader, StreamInfo, TransportLayerNack,
)

sent = []

def transport_write(header, payload, attributes):
    sent.append(header.sequence_number)
    return len(payload)

responder = NackResponderFactory(size=8).new_interceptor()
info = StreamInfo(ssrc=1, rtcp_feedback=[RTCPFeedback(type="nack")])
write = responder.bind_local_stream(info, transport_write)
for seq in (10, 11, 12):
    write(RTPHeader(sequence_number=seq, ssrc=1), b"data", {})

responder.resend_packets(TransportLayerNack(media_ssrc=1, nacks=[NackPair(packet_id=11)]))
print(sent)  # [10, 11, 12, 11]
```

## What it does not do

- There is no periodic picture-loss-indication (PLI) generator; the
  `rtpinterceptor.intervalpli` package holds no modules. Only the
  `PictureLossIndication` packet type and `stream_supports_pli()` exist.
- RTCP packets are plain objects: there is no RTCP wire encoding or
  parsing. RTCP readers must hand over parsed packets, and RTCP writers
  receive packet objects.
- There is no transport, network I/O or command-line tool; the package
  only wraps the reader and writer callables it is given.

## Tests

```
pip install -e .[test]
pytest
```