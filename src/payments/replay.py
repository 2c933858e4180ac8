import threading

from src.core.errors import ReplayError


class ReplayGuard:
    """Tracks consumed payment proofs so each is accepted at most once.

    ``claim`` is an atomic check-and-insert: a proof that is already processed,
    or being verified by another request, is rejected. A successful
    verification ``commit``s the claim; a failed one ``release``s it so the
    same proof can be resubmitted once the chain catches up.

    State is per process. Several instances need a shared store with a
    uniqueness constraint instead.
    """

    def __init__(self):
        self._processed: set[str] = set()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, key: str) -> None:
        with self._lock:
            if key in self._processed:
                raise ReplayError(f"Payment proof {key} was already used")
            if key in self._in_flight:
                raise ReplayError(f"Payment proof {key} is already being verified")
            self._in_flight.add(key)

    def commit(self, key: str) -> None:
        with self._lock:
            self._in_flight.discard(key)
            self._processed.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._in_flight.discard(key)

    def is_processed(self, key: str) -> bool:
        with self._lock:
            return key in self._processed
