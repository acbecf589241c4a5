from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Union

from .constants import CONTROL_SEQ, DEFAULT_TIMEOUT_MS, MAX_PAYLOAD, MAX_RETRIES, WINDOW_SIZE
from .errors import ProtocolError, RetransmissionExhausted, SessionStalled, TransportUnavailable
from .net import PeerEndpoint, UdpEndpoint
from .packet import Frame

log = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]
FailureCallback = Callable[[RetransmissionExhausted], None]


def thread_timer(interval: float, fn: Callable[[], None]) -> threading.Timer:
    t = threading.Timer(interval, fn)
    t.daemon = True
    t.start()
    return t


@dataclass(slots=True)
class Metrics:
    packets_sent: int = 0
    bytes_sent: int = 0
    retransmits: int = 0
    timeouts: int = 0
    naks: int = 0
    acked: int = 0
    abandoned: int = 0
    start_ts: float = field(default_factory=time.monotonic)

    @property
    def duration_s(self) -> float:
        return max(0.0, time.monotonic() - self.start_ts)


@dataclass(slots=True)
class WindowEntry:
    frame: Frame
    retry_count: int = 0
    timer: Optional[TimerHandle] = None
    generation: int = 0

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class SenderWindow:
    """Cumulative-ACK sliding window towards a single destination.

    Every mutating operation runs under one re-entrant lock, whether it comes
    from the application thread, the receive loop or a retransmission timer.
    A timer only acts if it is still the armed timer for a seq that is still
    in the window, so a cancelled timer that fires late does nothing.
    """

    def __init__(
        self,
        transport: UdpEndpoint,
        dest: PeerEndpoint,
        *,
        window_size: int = WINDOW_SIZE,
        max_retries: int = MAX_RETRIES,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        on_failure: Optional[FailureCallback] = None,
        timer_factory: TimerFactory = thread_timer,
    ):
        if window_size < 1:
            raise ValueError(f"window size must be positive: {window_size}")
        self.transport = transport
        self.dest = dest
        self.window_size = window_size
        self.max_retries = max_retries
        self.timeout_ms = timeout_ms
        self.on_failure = on_failure
        self.timer_factory = timer_factory

        self.base_seq = 0
        self.next_seq = 0
        self.last_ack_seen = -1
        self.window: dict[int, WindowEntry] = {}
        self.outbox: deque[bytes] = deque()
        self.abandoned: set[int] = set()
        self.metrics = Metrics()

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._closed = False
        self._failure: Optional[ProtocolError] = None

    @property
    def closed(self) -> bool:
        return self._closed or self._failure is not None

    def enqueue(self, message: Union[bytes, str]) -> None:
        payload = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        if len(payload) > MAX_PAYLOAD:
            raise ValueError(f"message too large: {len(payload)} > {MAX_PAYLOAD}")
        with self._lock:
            self._check_usable()
            self.outbox.append(payload)
            self.drain()

    def drain(self) -> None:
        with self._lock:
            self._check_usable()
            while self.outbox and self.next_seq - self.base_seq < self.window_size:
                if self.next_seq >= CONTROL_SEQ:
                    # buffered messages stay in the outbox
                    raise TransportUnavailable(f"sequence space to {self.dest} exhausted at seq={self.next_seq}")
                payload = self.outbox.popleft()
                seq = self.next_seq
                entry = WindowEntry(Frame.data(seq, payload))
                self._transmit(entry)
                self.window[seq] = entry
                self._arm(seq, entry)
                self.next_seq += 1

    def on_ack(self, ack_seq: int) -> None:
        """Cumulative: confirms every seq <= ``ack_seq``."""
        with self._lock:
            if ack_seq <= self.last_ack_seen:
                log.debug("stale ack %d from %s (last %d)", ack_seq, self.dest, self.last_ack_seen)
                return
            if ack_seq >= self.next_seq:
                log.debug("ack %d from %s for unsent seq (next %d)", ack_seq, self.dest, self.next_seq)
                return

            self.last_ack_seen = ack_seq
            self.base_seq = ack_seq + 1
            for seq in [s for s in self.window if s < self.base_seq]:
                self.window.pop(seq).cancel_timer()
                self.metrics.acked += 1
            self._changed.notify_all()

            if not self.closed:
                self.drain()

    def on_timeout(self, seq: int) -> None:
        with self._lock:
            entry = self.window.get(seq)
            if entry is None or self.closed:
                return
            self.metrics.timeouts += 1
            self._expire(seq, entry)

    def on_nak(self, seq: int, digest: Optional[int] = None) -> None:
        with self._lock:
            self.metrics.naks += 1
            entry = self.window.get(seq)
            if entry is None or self.closed:
                log.debug("nak for seq %d from %s not in window", seq, self.dest)
                return
            if digest is not None:
                log.debug("nak seq=%d from %s: corrupted (digest %04x)", seq, self.dest, digest)
            self._expire(seq, entry)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is buffered or in flight. False on timeout or failure."""
        with self._changed:
            self._changed.wait_for(lambda: self.closed or (not self.outbox and not self.window), timeout)
            return not self.closed and not self.outbox and not self.window

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._abandon_all()

    def _check_usable(self) -> None:
        if self._failure is not None:
            raise TransportUnavailable(f"session to {self.dest} failed: {self._failure}") from self._failure
        if self._closed:
            raise TransportUnavailable(f"session to {self.dest} is closed")

    def _transmit(self, entry: WindowEntry) -> None:
        data = entry.frame.to_bytes()
        try:
            self.transport.send(self.dest, data)
        except TransportUnavailable as e:
            self._failure = e
            self._abandon_all()
            raise
        self.metrics.packets_sent += 1
        self.metrics.bytes_sent += len(entry.frame.payload)
        log.debug("sent seq=%d to %s (retry %d)", entry.frame.seq, self.dest, entry.retry_count)

    def _arm(self, seq: int, entry: WindowEntry) -> None:
        entry.cancel_timer()
        entry.generation += 1
        generation = entry.generation
        entry.timer = self.timer_factory(self.timeout_ms / 1000.0, lambda: self._timer_fired(seq, generation))

    def _timer_fired(self, seq: int, generation: int) -> None:
        with self._lock:
            entry = self.window.get(seq)
            if entry is None or entry.generation != generation or self.closed:
                return
            self.metrics.timeouts += 1
            try:
                self._expire(seq, entry)
            except TransportUnavailable as e:
                log.error("retransmission of seq=%d to %s failed: %s", seq, self.dest, e)

    def _expire(self, seq: int, entry: WindowEntry) -> None:
        entry.retry_count += 1
        if entry.retry_count > self.max_retries:
            self.window.pop(seq).cancel_timer()
            self.abandoned.add(seq)
            self.metrics.abandoned += 1
            self._changed.notify_all()
            err = RetransmissionExhausted(self.dest, seq, self.max_retries, entry.frame.payload)
            log.warning("%s", err)
            if self.on_failure is not None:
                self.on_failure(err)
            if not self.window and self.next_seq - self.base_seq >= self.window_size:
                self._stall()
            return

        self.metrics.retransmits += 1
        self._transmit(entry)
        self._arm(seq, entry)

    def _stall(self) -> None:
        """Every slot holds an abandoned seq: nothing can be sent or acknowledged again."""
        self._failure = SessionStalled(self.dest, self.base_seq, self.window_size)
        log.error("%s; dropping %d buffered messages", self._failure, len(self.outbox))
        self._abandon_all()

    def _abandon_all(self) -> None:
        for entry in self.window.values():
            entry.cancel_timer()
        self.window.clear()
        self.outbox.clear()
        self._changed.notify_all()
