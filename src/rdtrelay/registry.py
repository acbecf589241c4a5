from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .net import PeerEndpoint
from .receiver import ReceiverSession
from .sender import SenderWindow

log = logging.getLogger(__name__)

SenderFactory = Callable[[PeerEndpoint], SenderWindow]
Announcer = Callable[[PeerEndpoint, str], None]

JOINED = "joined"
LEFT = "left"


@dataclass(slots=True)
class PeerEntry:
    endpoint: PeerEndpoint
    receiver: ReceiverSession
    sender: SenderWindow
    lock: threading.Lock = field(default_factory=threading.Lock)


class PeerRegistry:
    """Owns every per-peer session; nothing else keeps a session alive on its own."""

    def __init__(self, sender_factory: SenderFactory, announce: Optional[Announcer] = None):
        self.sender_factory = sender_factory
        self.announce = announce
        self._peers: Dict[PeerEndpoint, PeerEntry] = {}
        self._lock = threading.Lock()

    def register_on_first_contact(self, endpoint: PeerEndpoint) -> PeerEntry:
        with self._lock:
            entry = self._peers.get(endpoint)
            if entry is not None:
                return entry
            entry = PeerEntry(endpoint, ReceiverSession(), self.sender_factory(endpoint))
            self._peers[endpoint] = entry

        log.info("peer %s joined (%d registered)", endpoint, len(self))
        if self.announce is not None:
            self.announce(endpoint, JOINED)
        return entry

    def remove(self, endpoint: PeerEndpoint) -> bool:
        with self._lock:
            entry = self._peers.pop(endpoint, None)
        if entry is None:
            return False

        entry.sender.close()
        log.info("peer %s left (%d registered)", endpoint, len(self))
        if self.announce is not None:
            self.announce(endpoint, LEFT)
        return True

    def get(self, endpoint: PeerEndpoint) -> Optional[PeerEntry]:
        with self._lock:
            return self._peers.get(endpoint)

    def endpoints(self) -> List[PeerEndpoint]:
        with self._lock:
            return list(self._peers)

    def close(self) -> None:
        with self._lock:
            entries = list(self._peers.values())
            self._peers.clear()
        for entry in entries:
            entry.sender.close()

    def __contains__(self, endpoint: object) -> bool:
        with self._lock:
            return endpoint in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
