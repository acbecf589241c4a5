from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import Tuple

from .constants import RECV_BUFSIZE
from .errors import TransportUnavailable

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PeerEndpoint:
    host: str
    port: int

    @property
    def addr(self) -> Tuple[str, int]:
        return (self.host, self.port)

    @classmethod
    def of(cls, addr: Tuple[str, int]) -> "PeerEndpoint":
        # IPv6 recvfrom addresses carry flowinfo/scope_id as well
        return cls(addr[0], int(addr[1]))

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class UdpEndpoint:
    """Unreliable datagram transport. Neither ordering nor delivery is assumed."""

    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()
        self.closed = False

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((host, port))
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @classmethod
    def sending(
        cls,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @property
    def local(self) -> PeerEndpoint:
        return PeerEndpoint.of(self.sock.getsockname())

    def send(self, endpoint: PeerEndpoint, data: bytes) -> None:
        if self.closed:
            raise TransportUnavailable("transport is closed")
        if self.impairment.should_drop():
            log.debug("dropped outbound %d bytes to %s", len(data), endpoint)
            return
        self.impairment.sleep_if_needed()
        try:
            self.sock.sendto(data, endpoint.addr)
        except OSError as e:
            raise TransportUnavailable(f"send to {endpoint} failed: {e}") from e

    def receive(self, bufsize: int = RECV_BUFSIZE) -> Tuple[bytes, PeerEndpoint]:
        """Next datagram. Raises ``TimeoutError`` when the socket timeout elapses."""
        while True:
            if self.closed:
                raise TransportUnavailable("transport is closed")
            try:
                data, addr = self.sock.recvfrom(bufsize)
            except TimeoutError:
                raise
            except (ConnectionResetError, ConnectionRefusedError):
                # ICMP port unreachable from an earlier send; not fatal for UDP
                continue
            except OSError as e:
                raise TransportUnavailable(f"receive failed: {e}") from e
            if self.impairment.should_drop():
                log.debug("dropped inbound %d bytes from %s:%s", len(data), addr[0], addr[1])
                continue
            self.impairment.sleep_if_needed()
            return data, PeerEndpoint.of(addr)

    def close(self) -> None:
        self.closed = True
        self.sock.close()
