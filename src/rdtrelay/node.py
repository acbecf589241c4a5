from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .constants import DEFAULT_TIMEOUT_MS, MAX_RETRIES, WINDOW_SIZE
from .errors import ChecksumMismatch, MalformedFrame, TransportUnavailable
from .net import PeerEndpoint, UdpEndpoint
from .packet import Ack, Bye, ControlMessage, Frame, Nak, decode, parse_control
from .receiver import ReceiverValidator
from .registry import PeerEntry, PeerRegistry
from .sender import FailureCallback, SenderWindow, TimerFactory, thread_timer

log = logging.getLogger(__name__)


@dataclass(slots=True)
class NodeStats:
    datagrams: int = 0
    malformed: int = 0
    corrupt_control: int = 0
    unknown_peer: int = 0
    accepted: int = 0
    rejected: int = 0


class Node(abc.ABC):
    """One UDP socket, one receive loop, and a registry of peer sessions.

    Data frames are validated and answered with a control frame; control
    frames drive the sender window of the peer they came from.
    """

    admit_unknown = True
    name = "node"

    def __init__(
        self,
        transport: UdpEndpoint,
        *,
        window_size: int = WINDOW_SIZE,
        max_retries: int = MAX_RETRIES,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        on_failure: Optional[FailureCallback] = None,
        timer_factory: TimerFactory = thread_timer,
    ):
        self.transport = transport
        self.window_size = window_size
        self.max_retries = max_retries
        self.timeout_ms = timeout_ms
        self.on_failure = on_failure
        self.timer_factory = timer_factory

        self.registry = PeerRegistry(self._new_sender)
        self.validator = ReceiverValidator(self.registry)
        self.stats = NodeStats()
        self.failure: Optional[TransportUnavailable] = None

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _new_sender(self, endpoint: PeerEndpoint) -> SenderWindow:
        return SenderWindow(
            self.transport,
            endpoint,
            window_size=self.window_size,
            max_retries=self.max_retries,
            timeout_ms=self.timeout_ms,
            on_failure=self.on_failure,
            timer_factory=self.timer_factory,
        )

    @abc.abstractmethod
    def deliver(self, payload: bytes, origin: PeerEndpoint) -> None:
        """Hand an accepted payload from ``origin`` to the application."""

    def handle_datagram(self, raw: bytes, endpoint: PeerEndpoint) -> None:
        self.stats.datagrams += 1
        try:
            frame = decode(raw)
        except MalformedFrame as e:
            self.stats.malformed += 1
            log.debug("dropping datagram from %s: %s", endpoint, e)
            return

        if frame.is_control:
            self._handle_control(frame, endpoint)
            return

        if self._lookup(endpoint) is None:
            return
        verdict = self.validator.validate(frame, endpoint)
        try:
            self.reply(endpoint, verdict.reply)
        except TransportUnavailable as e:
            self._drop_peer(endpoint, e)
            return
        if not verdict.accepted:
            self.stats.rejected += 1
            return
        self.stats.accepted += 1
        self.deliver(verdict.payload, endpoint)

    def reply(self, endpoint: PeerEndpoint, msg: ControlMessage) -> None:
        self.transport.send(endpoint, Frame.control(msg).to_bytes())

    def _lookup(self, endpoint: PeerEndpoint) -> Optional[PeerEntry]:
        if self.admit_unknown:
            return self.registry.register_on_first_contact(endpoint)
        entry = self.registry.get(endpoint)
        if entry is None:
            self.stats.unknown_peer += 1
            log.debug("ignoring datagram from unknown peer %s", endpoint)
        return entry

    def _handle_control(self, frame: Frame, endpoint: PeerEndpoint) -> None:
        try:
            frame.verify()
            msg = parse_control(frame.payload)
        except ChecksumMismatch as e:
            self.stats.corrupt_control += 1
            log.debug("dropping control frame from %s: %s", endpoint, e)
            return
        except MalformedFrame as e:
            self.stats.malformed += 1
            log.debug("dropping control frame from %s: %s", endpoint, e)
            return

        if isinstance(msg, Bye):
            self.registry.remove(endpoint)
            return

        entry = self._lookup(endpoint)
        if entry is None:
            return
        try:
            if isinstance(msg, Ack):
                # ACK n names the next expected seq, so everything up to n - 1 is confirmed
                entry.sender.on_ack(msg.seq - 1)
            elif isinstance(msg, Nak):
                entry.sender.on_nak(msg.seq, msg.digest)
        except TransportUnavailable as e:
            self._drop_peer(endpoint, e)

    def _drop_peer(self, endpoint: PeerEndpoint, err: TransportUnavailable) -> None:
        """A send to one peer failed. Only a closed socket stops the whole node."""
        if self.transport.closed:
            raise err
        log.warning("dropping peer %s: %s", endpoint, err)
        self.registry.remove(endpoint)

    def serve(self, stop: Optional[threading.Event] = None) -> None:
        """Receive loop. Returns once ``stop`` is set; transport failures propagate."""
        stop = stop or self._stop
        while not stop.is_set():
            try:
                raw, endpoint = self.transport.receive()
            except TimeoutError:
                continue
            except TransportUnavailable:
                if stop.is_set():
                    break
                raise
            self.handle_datagram(raw, endpoint)

    def start(self) -> "Node":
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-recv", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            self.serve()
        except TransportUnavailable as e:
            self.failure = e
            log.error("%s receive loop stopped: %s", self.name, e)
            self.registry.close()

    def close(self) -> None:
        self._stop.set()
        self.registry.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)
        self.transport.close()

    def __enter__(self) -> "Node":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
