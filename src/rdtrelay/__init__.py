"""Reliable message relay over UDP.

A small reliability layer on top of datagrams:
- CRC-16-CCITT payload digests and a fixed 6-byte frame header
- a cumulative-ACK sliding window with bounded per-packet retransmission
- exactly-next receiver validation answered with ACK/NAK
- a hub that relays every accepted message to the other registered peers
"""

from .client import Client
from .errors import (
    ChecksumMismatch,
    MalformedFrame,
    ProtocolError,
    RetransmissionExhausted,
    SequenceMismatch,
    SessionStalled,
    TransportUnavailable,
)
from .relay import BroadcastRelay, Hub

__all__ = [
    "BroadcastRelay",
    "ChecksumMismatch",
    "Client",
    "Hub",
    "MalformedFrame",
    "ProtocolError",
    "RetransmissionExhausted",
    "SequenceMismatch",
    "SessionStalled",
    "TransportUnavailable",
]
