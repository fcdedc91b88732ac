from __future__ import annotations

import threading

from signalk_mqtt_export.values import TelemetryValue

ChangeKey = tuple[str, str]

DEFAULT_STRIPES = 64


class ChangeFilter:
    """Remembers the last value forwarded per (context, path).

    Keys are spread over a fixed array of locks so that each key has a single
    writer while unrelated keys proceed in parallel. Entries are never evicted.
    """

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self._locks = [threading.Lock() for _ in range(stripes)]
        self._last_values: dict[ChangeKey, str] = {}

    def _lock_for(self, key: ChangeKey) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def should_send(self, key: ChangeKey, value: TelemetryValue) -> bool:
        fingerprint = value.fingerprint()
        with self._lock_for(key):
            if self._last_values.get(key) == fingerprint:
                return False
            self._last_values[key] = fingerprint
            return True

    def clear(self) -> None:
        for lock in self._locks:
            lock.acquire()
        try:
            self._last_values.clear()
        finally:
            for lock in self._locks:
                lock.release()

    def __len__(self) -> int:
        return len(self._last_values)
