from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from conftest import FakeTimers, FakeTransport
from rdtrelay.constants import CONTROL_SEQ
from rdtrelay.errors import RetransmissionExhausted, TransportUnavailable
from rdtrelay.net import PeerEndpoint
from rdtrelay.sender import SenderWindow

HUB = PeerEndpoint("127.0.0.1", 9000)


def make_window(transport, timers, **kwargs) -> SenderWindow:
    kwargs.setdefault("window_size", 5)
    kwargs.setdefault("max_retries", 3)
    return SenderWindow(transport, HUB, timer_factory=timers, **kwargs)


def test_window_full_buffers_rest(transport, timers):
    w = make_window(transport, timers)
    for i in range(8):
        w.enqueue(f"m{i}")

    assert [f.seq for f in transport.data_frames()] == [0, 1, 2, 3, 4]
    assert sorted(w.window) == [0, 1, 2, 3, 4]
    assert len(timers.armed) == 5
    assert list(w.outbox) == [b"m5", b"m6", b"m7"]
    assert w.next_seq - w.base_seq == 5


def test_cumulative_ack_slides_and_drains(transport, timers):
    w = make_window(transport, timers)
    for i in range(8):
        w.enqueue(f"m{i}")
    first_timers = list(timers.timers)

    w.on_ack(2)

    assert w.base_seq == 3
    assert all(t.cancelled for t in first_timers[:3])
    assert not any(t.cancelled for t in first_timers[3:])
    assert sorted(w.window) == [3, 4, 5, 6, 7]
    assert not w.outbox
    assert w.metrics.acked == 3


def test_stale_and_duplicate_acks_ignored(transport, timers):
    w = make_window(transport, timers)
    for i in range(4):
        w.enqueue(f"m{i}")
    w.on_ack(2)
    w.on_ack(2)
    w.on_ack(0)
    w.on_ack(-1)
    assert w.base_seq == 3
    assert sorted(w.window) == [3]


def test_ack_for_unsent_seq_ignored(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("only")
    w.on_ack(7)
    assert w.base_seq == 0
    assert 0 in w.window


def test_timeout_retransmits_unchanged_frame(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("hello")
    original = transport.sent[0]

    timers.timers[0].fire()

    assert transport.sent[1] == original
    assert w.window[0].retry_count == 1
    assert w.metrics.retransmits == 1
    assert w.metrics.timeouts == 1
    assert len(timers.armed) == 1


def test_retransmission_exhausted(transport, timers):
    failures: list[RetransmissionExhausted] = []
    w = make_window(transport, timers, max_retries=3, on_failure=failures.append)
    w.enqueue("doomed")

    for _ in range(3):
        w.on_timeout(0)
    assert w.window[0].retry_count == 3
    assert not failures

    w.on_timeout(0)

    assert len(failures) == 1
    assert failures[0].seq == 0
    assert failures[0].payload == b"doomed"
    assert 0 not in w.window
    assert w.abandoned == {0}
    assert w.base_seq == 0
    assert w.metrics.abandoned == 1
    assert len(transport.data_frames()) == 4  # original + 3 retransmissions
    assert not timers.armed


def test_session_survives_abandoned_packet(transport, timers):
    w = make_window(transport, timers, max_retries=0)
    w.enqueue("lost")
    w.on_timeout(0)
    assert w.abandoned == {0}
    assert not w.closed

    w.enqueue("next")
    assert 1 in w.window
    assert transport.data_frames()[-1].payload == b"next"


def test_every_slot_abandoned_fails_session(transport, timers):
    failures: list[RetransmissionExhausted] = []
    w = make_window(transport, timers, window_size=2, max_retries=0, on_failure=failures.append)
    for m in ("a", "b", "c"):
        w.enqueue(m)

    w.on_timeout(0)
    assert not w.closed

    w.on_timeout(1)

    assert [f.seq for f in failures] == [0, 1]
    assert w.closed
    assert not w.outbox
    assert not timers.armed
    assert not w.wait_idle(0)
    with pytest.raises(TransportUnavailable, match="stalled"):
        w.enqueue("d")
    assert [f.payload for f in transport.data_frames()] == [b"a", b"b"]


def test_sequence_space_exhaustion_keeps_message(transport, timers):
    w = make_window(transport, timers)
    w.base_seq = w.next_seq = CONTROL_SEQ - 1
    w.last_ack_seen = CONTROL_SEQ - 2
    w.enqueue("last")
    assert transport.data_frames()[-1].seq == CONTROL_SEQ - 1

    with pytest.raises(TransportUnavailable, match="exhausted"):
        w.enqueue("overflow")

    assert list(w.outbox) == [b"overflow"]
    assert sorted(w.window) == [CONTROL_SEQ - 1]


def test_late_timer_after_ack_is_noop(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("a")
    w.on_ack(0)
    sent = len(transport.sent)

    timers.timers[0].fire()
    w.on_timeout(0)

    assert len(transport.sent) == sent
    assert w.metrics.retransmits == 0


def test_superseded_timer_is_noop(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("a")
    stale = timers.timers[0]
    w.on_timeout(0)

    stale.fire()

    assert w.window[0].retry_count == 1


def test_nak_forces_retransmission_and_counts_retry(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("a")
    w.enqueue("b")
    w.on_timeout(1)

    w.on_nak(1, 0x1234)

    assert w.window[1].retry_count == 2
    assert [f.seq for f in transport.data_frames()] == [0, 1, 1, 1]
    assert w.metrics.naks == 1


def test_nak_for_unknown_seq_ignored(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("a")
    w.on_nak(5)
    assert len(transport.sent) == 1


def test_close_cancels_timers_and_fails_fast(transport, timers):
    w = make_window(transport, timers)
    for i in range(7):
        w.enqueue(f"m{i}")
    w.close()

    assert not timers.armed
    assert not w.window and not w.outbox
    with pytest.raises(TransportUnavailable):
        w.enqueue("late")


def test_transport_failure_is_fatal_to_session(transport, timers):
    w = make_window(transport, timers)
    w.enqueue("ok")
    transport.broken = True

    with pytest.raises(TransportUnavailable):
        w.enqueue("boom")
    assert w.closed

    transport.broken = False
    with pytest.raises(TransportUnavailable):
        w.enqueue("still refused")
    with pytest.raises(TransportUnavailable):
        w.drain()
    assert not timers.armed


def test_oversized_message_rejected(transport, timers):
    w = make_window(transport, timers)
    with pytest.raises(ValueError):
        w.enqueue(b"x" * 5000)


def test_wait_idle(transport, timers):
    w = make_window(transport, timers)
    assert w.wait_idle(0)
    w.enqueue("a")
    assert not w.wait_idle(0.01)
    w.on_ack(0)
    assert w.wait_idle(0)


ops = st.lists(
    st.tuples(st.sampled_from(["enqueue", "ack", "timeout", "nak"]), st.integers(-1, 30)),
    max_size=80,
)


@given(ops, st.integers(1, 6))
def test_window_invariants_hold(steps, size):
    transport, timers = FakeTransport(), FakeTimers()
    w = SenderWindow(transport, HUB, window_size=size, max_retries=2, timer_factory=timers)
    last_base = w.base_seq

    for op, n in steps:
        if op == "enqueue":
            w.enqueue(f"msg {n}")
        elif op == "ack":
            w.on_ack(n)
        elif op == "timeout":
            w.on_timeout(n)
        else:
            w.on_nak(n)

        assert len(w.window) <= size
        assert w.next_seq - w.base_seq <= size
        assert all(w.base_seq <= k < w.next_seq for k in w.window)
        assert w.base_seq >= last_base
        last_base = w.base_seq
        assert len(timers.armed) == len(w.window)


@given(st.lists(st.integers(-1, 20), max_size=40))
def test_base_seq_monotonic_under_any_ack_order(acks):
    transport, timers = FakeTransport(), FakeTimers()
    w = SenderWindow(transport, HUB, window_size=32, timer_factory=timers)
    for i in range(21):
        w.enqueue(str(i))

    seen = []
    for a in acks:
        w.on_ack(a)
        seen.append(w.base_seq)
    assert seen == sorted(seen)
    if acks:
        assert w.base_seq == max(max(acks), -1) + 1
