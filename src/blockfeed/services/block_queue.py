from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional


class BlockQueue:
    """
    Bounded hand-off between the block subscription and the single consumer.

    When full, the oldest pending block number is dropped so the consumer
    always works towards the chain head.
    """

    def __init__(self, maxsize: int = 32) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be > 0")
        self._items: Deque[int] = deque(maxlen=maxsize)
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def put(self, block_number: int) -> bool:
        """Returns False once closed."""
        with self._cond:
            if self._closed:
                return False
            if len(self._items) == self._items.maxlen:
                self.dropped += 1
            self._items.append(int(block_number))
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[int]:
        """Next block number, or None on timeout or once closed and drained."""
        with self._cond:
            if not self._items and not self._closed:
                self._cond.wait(timeout)
            if self._items:
                return self._items.popleft()
            return None

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._items.clear()
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
