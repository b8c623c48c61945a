"""Time-ordered child keys and timestamps for tree records."""

import secrets
import time

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def now_ms() -> int:
    """Current time as epoch milliseconds (the stored timestamp format)."""
    return int(time.time() * 1000)


class PushKeyGenerator:
    """Generate 20-character keys that sort by creation time.

    The first 8 characters encode the millisecond timestamp, the remaining 12
    are random. Keys created within the same millisecond reuse the previous
    random part incremented by one, so ordering holds inside a burst too.
    """

    def __init__(self) -> None:
        self._last_ts = -1
        self._last_random: list[int] = [0] * 12

    def __call__(self, timestamp_ms: int | None = None) -> str:
        ts = now_ms() if timestamp_ms is None else timestamp_ms
        duplicate = ts == self._last_ts
        self._last_ts = ts

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[ts % 64])
            ts //= 64
        prefix = "".join(reversed(time_chars))

        if not duplicate:
            self._last_random = [secrets.randbelow(64) for _ in range(12)]
        else:
            i = 11
            while i >= 0 and self._last_random[i] == 63:
                self._last_random[i] = 0
                i -= 1
            if i >= 0:
                self._last_random[i] += 1

        return prefix + "".join(PUSH_CHARS[n] for n in self._last_random)


generate_push_key = PushKeyGenerator()
