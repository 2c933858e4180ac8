import threading
import time
from collections import Counter, deque
from collections.abc import Callable


class MetricsCollector:
    """Delivery outcomes over a rolling window, plus verification outcome counts."""

    def __init__(self, window_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self._window_seconds = window_seconds
        self._clock = clock
        # (timestamp, succeeded, endpoint_id), oldest first
        self._deliveries: deque[tuple[float, bool, str | None]] = deque()
        self._verifications: Counter[str] = Counter()
        self._lock = threading.Lock()

    def record_delivery(self, succeeded: bool, endpoint_id: str | None = None) -> None:
        with self._lock:
            self._deliveries.append((self._clock(), succeeded, endpoint_id))

    def record_verification(self, outcome: str) -> None:
        """Count a verification result: ``"verified"`` or an error reason."""
        with self._lock:
            self._verifications[outcome] += 1

    def _window(self) -> list[tuple[float, bool, str | None]]:
        cutoff = self._clock() - self._window_seconds
        while self._deliveries and self._deliveries[0][0] < cutoff:
            self._deliveries.popleft()
        return list(self._deliveries)

    def success_count_in_window(self) -> int:
        with self._lock:
            return sum(1 for _, ok, _ in self._window() if ok)

    def failure_count_in_window(self) -> int:
        with self._lock:
            return sum(1 for _, ok, _ in self._window() if not ok)

    def total_in_window(self) -> int:
        with self._lock:
            return len(self._window())

    def failure_rate(self) -> float:
        """Delivery failure rate in the current window (0.0 to 1.0)."""
        with self._lock:
            window = self._window()
        if not window:
            return 0.0
        return sum(1 for _, ok, _ in window if not ok) / len(window)

    def verification_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._verifications)

    def snapshot(self) -> dict:
        with self._lock:
            window = self._window()
            verifications = dict(self._verifications)
        failures = sum(1 for _, ok, _ in window if not ok)
        return {
            "deliveries": {
                "windowSeconds": self._window_seconds,
                "total": len(window),
                "failed": failures,
                "failureRate": failures / len(window) if window else 0.0,
            },
            "verifications": verifications,
        }
