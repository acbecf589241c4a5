from __future__ import annotations

import logging
import socket
from typing import Callable, Optional, Union

from .constants import POLL_INTERVAL_MS
from .errors import TransportUnavailable
from .net import Impairment, PeerEndpoint, UdpEndpoint
from .node import Node
from .packet import Bye

log = logging.getLogger(__name__)

MessageCallback = Callable[[str, PeerEndpoint], None]


class Client(Node):
    """Originating side: one sender window towards the hub, relayed messages back."""

    name = "client"
    admit_unknown = False

    def __init__(
        self,
        transport: UdpEndpoint,
        server: PeerEndpoint,
        on_message: Optional[MessageCallback] = None,
        **kwargs,
    ):
        super().__init__(transport, **kwargs)
        self.server = server
        self.on_message = on_message
        self.received: list[str] = []
        self.session = self.registry.register_on_first_contact(server).sender

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        impairment: Impairment | None = None,
        **kwargs,
    ) -> "Client":
        # replies come from the resolved address, not the hostname
        server = PeerEndpoint(socket.gethostbyname(host), port)
        udp = UdpEndpoint.sending(timeout_ms=POLL_INTERVAL_MS, impairment=impairment)
        log.info("client sending to hub %s", server)
        return cls(udp, server, **kwargs)

    def send(self, message: Union[str, bytes]) -> None:
        self.session.enqueue(message)

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self.session.wait_idle(timeout)

    def deliver(self, payload: bytes, origin: PeerEndpoint) -> None:
        text = payload.decode("utf-8", errors="replace")
        self.received.append(text)
        if self.on_message is not None:
            self.on_message(text, origin)
        else:
            log.info("message: %s", text)

    def close(self) -> None:
        if not self.transport.closed:
            try:
                self.reply(self.server, Bye())
            except TransportUnavailable as e:
                log.debug("could not say goodbye to %s: %s", self.server, e)
        super().close()
