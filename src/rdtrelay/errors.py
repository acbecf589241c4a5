from __future__ import annotations


class ProtocolError(Exception):
    pass


class MalformedFrame(ProtocolError):
    """Datagram or control payload that cannot be parsed; dropped, never NAKed."""


class ChecksumMismatch(ProtocolError):
    def __init__(self, seq: int, received: int, computed: int):
        super().__init__(f"checksum mismatch at seq={seq}: got {received:#06x}, computed {computed:#06x}")
        self.seq = seq
        self.received = received
        self.computed = computed


class SequenceMismatch(ProtocolError):
    def __init__(self, seq: int, expected: int):
        super().__init__(f"sequence mismatch: expected {expected}, got {seq}")
        self.seq = seq
        self.expected = expected


class RetransmissionExhausted(ProtocolError):
    def __init__(self, dest, seq: int, retries: int, payload: bytes):
        super().__init__(f"gave up on seq={seq} to {dest} after {retries} retransmissions")
        self.dest = dest
        self.seq = seq
        self.retries = retries
        self.payload = payload


class TransportUnavailable(ProtocolError):
    pass


class SessionStalled(ProtocolError):
    def __init__(self, dest, base_seq: int, window_size: int):
        super().__init__(f"session to {dest} stalled: all {window_size} slots from seq={base_seq} abandoned")
        self.dest = dest
        self.base_seq = base_seq
        self.window_size = window_size
