import logging

logger = logging.getLogger(__name__)


class Outbox:
    """Side effects queued during a transaction and run after commit.

    A failing delivery is logged and skipped; it never undoes the state
    transition that queued it.
    """

    def __init__(self):
        self._pending = []

    def __len__(self):
        return len(self._pending)

    def enqueue(self, description: str, fn, *args, **kwargs):
        self._pending.append((description, fn, args, kwargs))

    def discard(self):
        self._pending = []

    def flush(self) -> int:
        pending, self._pending = self._pending, []
        delivered = 0
        for description, fn, args, kwargs in pending:
            try:
                fn(*args, **kwargs)
                delivered += 1
            except Exception:
                logger.exception("Outbound delivery failed: %s", description)
        return delivered
