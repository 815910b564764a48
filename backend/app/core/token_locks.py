"""
Per-token serialization for read-modify-write on a single block
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional


class TokenLockRegistry:
    """
    Hands out one lock per identity token

    Locks exist only while someone holds or waits on them, so the registry
    does not grow with the number of tokens ever scanned.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, token: str) -> Iterator[None]:
        """Hold the lock for token for the duration of the block"""
        with self._lock:
            token_lock = self._locks.setdefault(token, threading.Lock())
            self._waiters[token] = self._waiters.get(token, 0) + 1
        try:
            with token_lock:
                yield
        finally:
            with self._lock:
                self._waiters[token] -= 1
                if self._waiters[token] == 0:
                    del self._waiters[token]
                    del self._locks[token]

    def active_count(self) -> int:
        with self._lock:
            return len(self._locks)


_registry: Optional[TokenLockRegistry] = None
_registry_lock = threading.Lock()


def get_token_locks() -> TokenLockRegistry:
    """
    Get global TokenLockRegistry

    Returns:
        TokenLockRegistry singleton
    """
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = TokenLockRegistry()
    return _registry
