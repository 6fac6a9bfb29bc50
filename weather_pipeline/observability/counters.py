"""
Process-wide counters shared by consumer worker threads.
"""

import threading


class AtomicCounter:
    """
    Integer counter with atomic increment, read and reset.

    Each counter guards only its own value; there is no shared lock across
    counters, so readers of one never wait on writers of another.
    """

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        """Add ``amount`` and return the new value."""
        if amount < 0:
            raise ValueError("AtomicCounter only moves forward between resets")
        with self._lock:
            self._value += amount
            return self._value

    def get(self) -> int:
        with self._lock:
            return self._value

    def reset(self) -> int:
        """Set to zero and return the value before the reset."""
        with self._lock:
            previous = self._value
            self._value = 0
            return previous

    def __int__(self) -> int:
        return self.get()

    def __repr__(self) -> str:
        return f"AtomicCounter({self.get()})"
