from __future__ import annotations

HEADER_FORMAT = "!IH"  # seq, crc16
HEADER_SIZE = 6

MAX_SEQ = 0xFFFFFFFF
CONTROL_SEQ = MAX_SEQ  # reserved for ACK/NAK/BYE frames

CRC16_POLY = 0x1021
CRC16_INIT = 0xFFFF

WINDOW_SIZE = 5
MAX_RETRIES = 3
DEFAULT_TIMEOUT_MS = 1000
MAX_PAYLOAD = 1400  # conservative to avoid IP fragmentation
RECV_BUFSIZE = 65535
POLL_INTERVAL_MS = 200

SERVER_TAG = "SERVER"
