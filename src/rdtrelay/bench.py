from __future__ import annotations

import time
from dataclasses import dataclass

from .client import Client
from .constants import DEFAULT_TIMEOUT_MS, MAX_RETRIES, WINDOW_SIZE
from .net import Impairment
from .relay import Hub

BENCH_PREFIX = "bench"


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    clients: int
    messages_sent: int
    messages_expected: int
    messages_delivered: int
    duration_s: float
    retransmits: int
    timeouts: int
    abandoned: int


def run_benchmark(
    *,
    clients: int = 3,
    messages: int = 50,
    loss_rate: float = 0.0,
    delay_ms: int = 0,
    window_size: int = WINDOW_SIZE,
    max_retries: int = MAX_RETRIES,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    deadline_s: float = 30.0,
) -> BenchmarkResult:
    """Hub plus ``clients`` clients on loopback, every client sending ``messages`` messages."""
    if clients < 2:
        raise ValueError("a relay benchmark needs at least two clients")

    impair = Impairment(loss_rate=loss_rate, delay_ms=delay_ms)
    opts = dict(window_size=window_size, max_retries=max_retries, timeout_ms=timeout_ms)

    hub = Hub.listening("127.0.0.1", 0, impairment=impair, **opts).start()
    peers = []
    try:
        port = hub.transport.local.port
        peers = [Client.connect("127.0.0.1", port, impairment=impair, **opts).start() for _ in range(clients)]

        # every client must be registered before the measured traffic starts
        for i, c in enumerate(peers):
            c.send(f"hello from {i}")
            c.flush(deadline_s)

        start = time.monotonic()
        for n in range(messages):
            for i, c in enumerate(peers):
                c.send(f"{BENCH_PREFIX} {i} {n}")

        expected = clients * messages * (clients - 1)
        stop_at = start + deadline_s
        while time.monotonic() < stop_at and _delivered(peers) < expected:
            time.sleep(0.01)
        duration_s = time.monotonic() - start
        delivered = _delivered(peers)
        senders = [c.session for c in peers] + _hub_senders(hub)
    finally:
        for c in peers:
            c.close()
        hub.close()

    return BenchmarkResult(
        clients=clients,
        messages_sent=clients * messages,
        messages_expected=expected,
        messages_delivered=delivered,
        duration_s=duration_s,
        retransmits=sum(s.metrics.retransmits for s in senders),
        timeouts=sum(s.metrics.timeouts for s in senders),
        abandoned=sum(s.metrics.abandoned for s in senders),
    )


def _delivered(peers: list[Client]) -> int:
    return sum(1 for c in peers for text in list(c.received) if text.startswith(BENCH_PREFIX))


def _hub_senders(hub: Hub) -> list:
    entries = (hub.registry.get(ep) for ep in hub.registry.endpoints())
    return [e.sender for e in entries if e is not None]
