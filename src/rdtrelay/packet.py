from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional, Union

from .checksum import crc16_ccitt
from .constants import CONTROL_SEQ, HEADER_FORMAT, HEADER_SIZE, MAX_PAYLOAD, MAX_SEQ
from .errors import ChecksumMismatch, MalformedFrame


def encode(seq: int, digest: int, payload: bytes) -> bytes:
    if not 0 <= seq <= MAX_SEQ:
        raise ValueError(f"sequence number out of range: {seq}")
    if not 0 <= digest <= 0xFFFF:
        raise ValueError(f"digest out of range: {digest}")
    if len(payload) > MAX_PAYLOAD:
        raise ValueError(f"payload too large: {len(payload)}")
    return struct.pack(HEADER_FORMAT, seq, digest) + payload


def decode(raw: bytes) -> "Frame":
    if len(raw) < HEADER_SIZE:
        raise MalformedFrame(f"datagram too small to be a valid frame: {len(raw)} bytes")
    seq, digest = struct.unpack_from(HEADER_FORMAT, raw)
    return Frame(seq=seq, digest=digest, payload=bytes(raw[HEADER_SIZE:]))


@dataclass(frozen=True, slots=True)
class Frame:
    seq: int
    digest: int
    payload: bytes = b""

    @property
    def is_control(self) -> bool:
        return self.seq == CONTROL_SEQ

    def verify(self) -> None:
        computed = crc16_ccitt(self.payload)
        if computed != self.digest:
            raise ChecksumMismatch(self.seq, self.digest, computed)

    def to_bytes(self) -> bytes:
        return encode(self.seq, self.digest, self.payload)

    @staticmethod
    def data(seq: int, payload: bytes) -> "Frame":
        if seq >= CONTROL_SEQ:
            raise ValueError(f"sequence number {seq} is reserved for control frames")
        return Frame(seq=seq, digest=crc16_ccitt(payload), payload=payload)

    @staticmethod
    def control(msg: "ControlMessage") -> "Frame":
        payload = msg.to_text().encode("ascii")
        return Frame(seq=CONTROL_SEQ, digest=crc16_ccitt(payload), payload=payload)


@dataclass(frozen=True, slots=True)
class Ack:
    """Cumulative acknowledgement; ``seq`` is the next sequence number the peer expects."""

    seq: int

    def to_text(self) -> str:
        return f"ACK {self.seq}"


@dataclass(frozen=True, slots=True)
class Nak:
    """Rejection of ``seq``; ``digest`` is set when the payload failed the checksum."""

    seq: int
    digest: Optional[int] = None

    def to_text(self) -> str:
        if self.digest is None:
            return f"NAK {self.seq}"
        return f"NAK {self.seq} {self.digest:04x}"


@dataclass(frozen=True, slots=True)
class Bye:
    def to_text(self) -> str:
        return "BYE"


ControlMessage = Union[Ack, Nak, Bye]


def parse_control(payload: bytes) -> ControlMessage:
    try:
        parts = payload.decode("ascii").split()
    except UnicodeDecodeError as e:
        raise MalformedFrame(f"control payload is not ascii: {payload!r}") from e

    try:
        if parts == ["BYE"]:
            return Bye()
        if len(parts) == 2 and parts[0] == "ACK":
            return Ack(_parse_seq(parts[1]))
        if len(parts) in (2, 3) and parts[0] == "NAK":
            digest = int(parts[2], 16) if len(parts) == 3 else None
            if digest is not None and not 0 <= digest <= 0xFFFF:
                raise ValueError(f"digest out of range: {parts[2]}")
            return Nak(_parse_seq(parts[1]), digest)
    except ValueError as e:
        raise MalformedFrame(f"bad control message {payload!r}: {e}") from e

    raise MalformedFrame(f"unrecognized control message: {payload!r}")


def _parse_seq(text: str) -> int:
    seq = int(text, 10)
    if not 0 <= seq <= MAX_SEQ:
        raise ValueError(f"sequence number out of range: {seq}")
    return seq
