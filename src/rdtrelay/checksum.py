from __future__ import annotations

from .constants import CRC16_INIT, CRC16_POLY


def crc16_ccitt(payload: bytes) -> int:
    """CRC-16-CCITT (poly 0x1021, init 0xFFFF, MSB first) over the whole payload."""
    crc = CRC16_INIT
    for byte in payload:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC16_POLY) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc
