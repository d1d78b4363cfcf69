# backend/services/locks.py
import threading
from contextlib import contextmanager
from typing import Iterator


class PairLocks:
    """In-process re-entrant locks keyed by (buyer_id, seller_id).

    Serialises every mutation of one buyer/seller pair inside this process.
    Cross-process safety comes from the database constraints and conditional
    updates; this only narrows the window between them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], list] = {}

    @contextmanager
    def hold(self, buyer_id: str, seller_id: str) -> Iterator[None]:
        key = (str(buyer_id), str(seller_id))
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


pair_locks = PairLocks()
