import gc
import weakref

import pytest

from rtpinterceptor.jitterbuffer.priority_queue import (
    InvalidOperationError,
    NotFoundError,
    PriorityQueue,
)
from rtpinterceptor.packets import RTPHeader, RTPPacket


def make_packet(seq, ts):
    return RTPPacket(header=RTPHeader(sequence_number=seq, timestamp=ts), payload=b"\x02")


def fill(queue, count=100):
    for i in range(count):
        queue.push(make_packet(5012 + i, 512 + i), 5012 + i)


def test_appends_packets_in_order():
    pkt = make_packet(5000, 500)
    pkt2 = make_packet(5004, 500)
    q = PriorityQueue()
    q.push(pkt, 5000)
    q.push(pkt2, 5004)
    assert list(q) == [pkt, pkt2]


def test_appends_many_in_order():
    q = PriorityQueue()
    fill(q)
    assert len(q) == 100
    seqs = [p.header.sequence_number for p in q]
    assert all(b == a + 1 for a, b in zip(seqs, seqs[1:]))
    assert seqs[0] == 5012
    assert seqs[-1] == 5012 + 99


def test_can_remove_an_element():
    q = PriorityQueue()
    q.push(make_packet(5000, 500), 5000)
    q.push(make_packet(5004, 500), 5004)
    fill(q)
    assert q.pop().header.sequence_number == 5000
    q.pop()
    assert q.pop().header.sequence_number == 5012


def test_prepends_lower_priority():
    q = PriorityQueue()
    fill(q)
    assert len(q) == 100
    pkt = make_packet(5000, 500)
    q.push(pkt, 5000)
    assert next(iter(q)) is pkt
    assert len(q) == 101


def test_can_find():
    q = PriorityQueue()
    fill(q)
    assert q.find(5012).header.sequence_number == 5012


def test_pop_at_updates_length():
    q = PriorityQueue()
    q.push(make_packet(5000, 500), 5000)
    q.push(make_packet(5004, 500), 5004)
    fill(q)
    assert len(q) == 102
    assert q.pop_at(5012).header.sequence_number == 5012
    assert len(q) == 101
    assert q.pop_at_timestamp(500).header.sequence_number == 5000
    assert len(q) == 100


def test_find_after_pop_at_raises():
    q = PriorityQueue()
    q.push(make_packet(1000, 5), 1000)
    assert q.pop_at(1000).header.sequence_number == 1000
    with pytest.raises(NotFoundError):
        q.find(1001)


def test_clear():
    q = PriorityQueue()
    q.clear()
    q.push(make_packet(1000, 5), 1000)
    assert len(q) == 1
    q.clear()
    assert len(q) == 0
    assert list(q) == []


def test_empty_queue_errors():
    q = PriorityQueue()
    with pytest.raises(InvalidOperationError):
        q.pop()
    with pytest.raises(InvalidOperationError):
        q.pop_at(1)
    with pytest.raises(InvalidOperationError):
        q.pop_at_timestamp(1)


def test_missing_timestamp_raises():
    q = PriorityQueue()
    q.push(make_packet(1, 10), 1)
    with pytest.raises(NotFoundError):
        q.pop_at_timestamp(11)
    assert len(q) == 1


def test_duplicate_priority_kept():
    q = PriorityQueue()
    first = make_packet(7, 1)
    second = make_packet(7, 2)
    q.push(first, 7)
    q.push(second, 7)
    assert len(q) == 2
    assert q.pop_at_timestamp(1) is first
    assert q.pop() is second


def _push_tracked(queue, refs, count):
    for i in range(count):
        packet = RTPPacket(
            header=RTPHeader(sequence_number=i, timestamp=i + 42), payload=bytes([i])
        )
        refs.append(weakref.ref(packet))
        queue.push(packet, i)


def test_popped_packets_are_unreferenced():
    q = PriorityQueue()
    refs = []
    count = 100
    _push_tracked(q, refs, count)
    popped_seqs = []
    for i in range(count - 1):
        if i % 3 == 0:
            popped_seqs.append(q.pop().header.sequence_number)
        elif i % 3 == 1:
            popped_seqs.append(q.pop_at(i).header.sequence_number)
        else:
            popped_seqs.append(q.pop_at_timestamp(i + 42).header.sequence_number)
    assert popped_seqs == list(range(count - 1))
    assert len(q) == 1
    assert q.find(count - 1).header.sequence_number == count - 1
    gc.collect()
    alive = [ref() for ref in refs if ref() is not None]
    assert len(alive) == 1
    assert alive[0].header.sequence_number == count - 1