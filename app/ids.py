"""
Time-ordered 63-bit identifiers: 41 bits of milliseconds since EPOCH_MS,
10 bits of node, 12 bits of per-millisecond sequence.
Used for users, videos and watch sessions (view ids). Rendered to clients as decimal strings.
"""
import threading
import time

EPOCH_MS = 1288834974657

NODE_BITS = 10
SEQUENCE_BITS = 12
MAX_NODE = (1 << NODE_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1


class IdGenerator:
    def __init__(self, node: int, clock=time.time):
        if not 0 <= node <= MAX_NODE:
            raise ValueError(f"node must be between 0 and {MAX_NODE}")
        self._node = node
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000) - EPOCH_MS

    def new_id(self) -> int:
        with self._lock:
            now = self._now_ms()
            # Never go backwards, even if the wall clock does
            if now < self._last_ms:
                now = self._last_ms
            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond
                    while now <= self._last_ms:
                        now = max(self._now_ms(), self._last_ms)
                        if now == self._last_ms:
                            time.sleep(0.0001)
            else:
                self._sequence = 0
            self._last_ms = now
            return (now << (NODE_BITS + SEQUENCE_BITS)) | (self._node << SEQUENCE_BITS) | self._sequence


def parse_id(raw: str) -> int | None:
    """Parse a client-supplied id string. Returns None if it cannot be one of ours."""
    if not raw or not raw.isascii() or not raw.isdigit() or len(raw) > 19:
        return None
    value = int(raw)
    if value <= 0 or value >= 1 << 63:
        return None
    return value
