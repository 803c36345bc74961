"""Short-TTL read cache for style profiles.

The cache is a non-authoritative view. Writers persist to the store first and
only then call ``set`` or ``invalidate``. Readers filling a miss go through
``set_if_generation`` so a slow read cannot overwrite a newer write.
"""

import threading
import time
from typing import Protocol

from letterstyle.style.profile import StyleProfile


def cache_key(clinician_id: str, subspecialty: str) -> str:
    return f"{clinician_id}:{subspecialty}"


class ProfileCache(Protocol):
    def get(self, clinician_id: str, subspecialty: str) -> StyleProfile | None: ...
    def set(self, profile: StyleProfile) -> None: ...
    def generation(self, clinician_id: str, subspecialty: str) -> tuple[int, int]: ...
    def set_if_generation(self, profile: StyleProfile, generation: tuple[int, int]) -> bool: ...
    def invalidate(self, clinician_id: str, subspecialty: str) -> None: ...
    def invalidate_clinician(self, clinician_id: str) -> None: ...
    def clear(self) -> None: ...


class TTLProfileCache:
    """Process-local cache, thread-safe. Entries expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 300, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[StyleProfile, float]] = {}
        # Bumped on every write; clear() and invalidate_clinician() bump the epoch
        self._generations: dict[str, int] = {}
        self._epoch = 0

    def _bump(self, key: str):
        self._generations[key] = self._generations.get(key, 0) + 1

    def get(self, clinician_id: str, subspecialty: str) -> StyleProfile | None:
        key = cache_key(clinician_id, subspecialty)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            profile, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return profile.copy()

    def set(self, profile: StyleProfile) -> None:
        key = cache_key(profile.clinician_id, profile.subspecialty)
        with self._lock:
            self._bump(key)
            self._entries[key] = (profile.copy(), self._clock() + self._ttl)

    def generation(self, clinician_id: str, subspecialty: str) -> tuple[int, int]:
        key = cache_key(clinician_id, subspecialty)
        with self._lock:
            return self._epoch, self._generations.get(key, 0)

    def set_if_generation(self, profile: StyleProfile, generation: tuple[int, int]) -> bool:
        """Store ``profile`` only if no write touched its key since ``generation`` was taken."""
        key = cache_key(profile.clinician_id, profile.subspecialty)
        with self._lock:
            if (self._epoch, self._generations.get(key, 0)) != generation:
                return False
            self._entries[key] = (profile.copy(), self._clock() + self._ttl)
            return True

    def invalidate(self, clinician_id: str, subspecialty: str) -> None:
        key = cache_key(clinician_id, subspecialty)
        with self._lock:
            self._bump(key)
            self._entries.pop(key, None)

    def invalidate_clinician(self, clinician_id: str) -> None:
        prefix = f"{clinician_id}:"
        with self._lock:
            self._epoch += 1
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            return {"size": len(self._entries), "keys": sorted(self._entries)}


class NullProfileCache:
    """Cache that never holds anything."""

    def get(self, clinician_id, subspecialty):
        return None

    def set(self, profile):
        pass

    def generation(self, clinician_id, subspecialty):
        return 0, 0

    def set_if_generation(self, profile, generation):
        return False

    def invalidate(self, clinician_id, subspecialty):
        pass

    def invalidate_clinician(self, clinician_id):
        pass

    def clear(self):
        pass

    def stats(self) -> dict:
        return {"size": 0, "keys": []}
