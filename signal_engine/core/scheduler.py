"""
Keyed, cancellable one-shot deadlines backed by threading.Timer.

Each schedule() call gets a fresh token; a timer only runs its callback if its
token is still the current one for the key, so a timer that was cancelled or
replaced (e.g. the id got reused) never fires against the new owner.
"""

from __future__ import annotations
import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger("signal_engine.scheduler")


class DeadlineScheduler:
    """Schedule callback(key) after a delay; cancel by key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._timers: Dict[str, Tuple[int, threading.Timer]] = {}

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[str], Any]) -> None:
        """(Re)arm the deadline for key. An existing deadline for the same key is cancelled."""
        with self._lock:
            existing = self._timers.pop(key, None)
            if existing is not None:
                existing[1].cancel()
            token = next(self._tokens)
            timer = threading.Timer(max(0.0, delay_seconds), self._fire, args=(key, token, callback))
            timer.daemon = True
            self._timers[key] = (token, timer)
            timer.start()
        logger.debug("Deadline armed: %s in %.1fs", key, delay_seconds)

    def cancel(self, key: str) -> bool:
        """Cancel the deadline for key. Returns True if one was pending."""
        with self._lock:
            entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[1].cancel()
        logger.debug("Deadline cancelled: %s", key)
        return True

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    def shutdown(self) -> None:
        """Cancel every pending deadline."""
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for _, timer in entries:
            timer.cancel()

    def _fire(self, key: str, token: int, callback: Callable[[str], Any]) -> None:
        with self._lock:
            entry = self._timers.get(key)
            if entry is None or entry[0] != token:
                return
            del self._timers[key]
        try:
            callback(key)
        except Exception as e:
            logger.exception("Deadline callback failed for %s: %s", key, e)
