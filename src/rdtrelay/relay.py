from __future__ import annotations

import logging

from .constants import POLL_INTERVAL_MS, SERVER_TAG
from .errors import TransportUnavailable
from .net import Impairment, PeerEndpoint, UdpEndpoint
from .node import Node
from .registry import PeerRegistry

log = logging.getLogger(__name__)


class BroadcastRelay:
    """Fan-out of accepted payloads to every other registered peer.

    Best effort: the origin has already been ACKed, so a failed forward is
    logged and never rolled back. Each forward goes through the peer's own
    hub-side sender window.
    """

    def __init__(self, registry: PeerRegistry):
        self.registry = registry
        self.forwarded = 0
        self.failed = 0
        registry.announce = self.announce

    def relay(self, payload: bytes, origin: PeerEndpoint) -> int:
        sent = 0
        for endpoint in self.registry.endpoints():
            if endpoint == origin:
                continue
            entry = self.registry.get(endpoint)
            if entry is None:
                continue
            try:
                entry.sender.enqueue(payload)
            except (TransportUnavailable, ValueError) as e:
                self.failed += 1
                log.warning("relay to %s failed: %s", endpoint, e)
                continue
            sent += 1
        self.forwarded += sent
        return sent

    def announce(self, endpoint: PeerEndpoint, event: str) -> None:
        self.relay(f"{SERVER_TAG}: {endpoint} {event}".encode("utf-8"), endpoint)


class Hub(Node):
    name = "hub"
    admit_unknown = True

    def __init__(self, transport: UdpEndpoint, **kwargs):
        super().__init__(transport, **kwargs)
        self.relay = BroadcastRelay(self.registry)

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        impairment: Impairment | None = None,
        **kwargs,
    ) -> "Hub":
        udp = UdpEndpoint.listening(host, port, timeout_ms=POLL_INTERVAL_MS, impairment=impairment)
        log.info("hub listening on %s", udp.local)
        return cls(udp, **kwargs)

    def deliver(self, payload: bytes, origin: PeerEndpoint) -> None:
        log.debug("relaying %d bytes from %s", len(payload), origin)
        self.relay.relay(payload, origin)
