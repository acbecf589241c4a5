from __future__ import annotations

import pytest

from rdtrelay.errors import TransportUnavailable
from rdtrelay.net import PeerEndpoint
from rdtrelay.packet import Frame, decode, parse_control


class FakeTimer:
    def __init__(self, interval: float, fn):
        self.interval = interval
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fn()


class FakeTimers:
    """Timer factory that never fires on its own."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval: float, fn) -> FakeTimer:
        t = FakeTimer(interval, fn)
        self.timers.append(t)
        return t

    @property
    def armed(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class FakeTransport:
    def __init__(self):
        self.sent: list[tuple[PeerEndpoint, bytes]] = []
        self.closed = False
        self.broken = False

    def send(self, endpoint: PeerEndpoint, data: bytes) -> None:
        if self.closed or self.broken:
            raise TransportUnavailable("fake transport down")
        self.sent.append((endpoint, data))

    def close(self) -> None:
        self.closed = True

    def frames(self, endpoint: PeerEndpoint | None = None) -> list[Frame]:
        return [decode(d) for e, d in self.sent if endpoint is None or e == endpoint]

    def data_frames(self, endpoint: PeerEndpoint | None = None) -> list[Frame]:
        return [f for f in self.frames(endpoint) if not f.is_control]

    def controls(self, endpoint: PeerEndpoint | None = None) -> list:
        return [parse_control(f.payload) for f in self.frames(endpoint) if f.is_control]


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def alice() -> PeerEndpoint:
    return PeerEndpoint("10.0.0.1", 4001)


@pytest.fixture
def bob() -> PeerEndpoint:
    return PeerEndpoint("10.0.0.2", 4002)


@pytest.fixture
def carol() -> PeerEndpoint:
    return PeerEndpoint("10.0.0.3", 4003)
