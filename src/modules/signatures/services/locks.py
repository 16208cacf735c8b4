import threading
from contextlib import contextmanager


class RequestLockRegistry:
    """One lock per signature request id, shared by every service instance
    of a process. Cross-process serialization comes from row locks.

    An entry lives only while some thread holds or waits for it; the last
    one out removes it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # request_id -> [lock, holders]

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, request_id: int) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(request_id)
            if entry is None:
                entry = self._locks[request_id] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _release_entry(self, request_id: int):
        with self._guard:
            entry = self._locks[request_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[request_id]

    @contextmanager
    def hold(self, request_id: int):
        lock = self._acquire_entry(request_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(request_id)
