from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import ChecksumMismatch, SequenceMismatch
from .net import PeerEndpoint
from .packet import Ack, ControlMessage, Frame, Nak

if TYPE_CHECKING:
    from .registry import PeerRegistry

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ReceiverSession:
    expected_seq: int = 0
    last_confirmed_seq: int = -1
    accepted: int = 0
    rejected: int = 0


@dataclass(frozen=True, slots=True)
class Verdict:
    reply: ControlMessage
    payload: Optional[bytes] = None
    error: Optional[Exception] = None

    @property
    def accepted(self) -> bool:
        return self.payload is not None


class ReceiverValidator:
    """Accepts a frame only if its digest matches and it is exactly the next expected seq.

    Anything else is NAKed and leaves the session untouched: corrupted frames
    carry their (bad) digest back, duplicates and out-of-order arrivals carry
    just their sequence number. Nothing is buffered for later reordering.
    """

    def __init__(self, registry: "PeerRegistry"):
        self.registry = registry

    def validate(self, frame: Frame, endpoint: PeerEndpoint) -> Verdict:
        entry = self.registry.get(endpoint)
        if entry is None:
            raise KeyError(f"unregistered peer {endpoint}")

        with entry.lock:
            session = entry.receiver
            try:
                self.check(frame, session)
            except ChecksumMismatch as e:
                session.rejected += 1
                log.debug("from %s: %s", endpoint, e)
                return Verdict(Nak(frame.seq, frame.digest), error=e)
            except SequenceMismatch as e:
                session.rejected += 1
                log.debug("from %s: %s", endpoint, e)
                return Verdict(Nak(frame.seq), error=e)

            session.expected_seq += 1
            session.last_confirmed_seq = frame.seq
            session.accepted += 1
            return Verdict(Ack(session.expected_seq), payload=frame.payload)

    @staticmethod
    def check(frame: Frame, session: ReceiverSession) -> None:
        frame.verify()
        if frame.seq != session.expected_seq:
            raise SequenceMismatch(frame.seq, session.expected_seq)
