import threading

from src.models.delivery import DeliveryAttempt


class DeliveryLogger:
    """Append-only, thread-safe record of webhook delivery attempts."""

    def __init__(self):
        self._attempts: list[DeliveryAttempt] = []
        self._lock = threading.Lock()

    def log(self, attempt: DeliveryAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)

    def get_attempts(
        self,
        event_id: str | None = None,
        endpoint_id: str | None = None,
    ) -> list[DeliveryAttempt]:
        with self._lock:
            return [
                a for a in self._attempts
                if (event_id is None or a.event_id == event_id)
                and (endpoint_id is None or a.endpoint_id == endpoint_id)
            ]

    def get_failed_attempts(self) -> list[DeliveryAttempt]:
        with self._lock:
            return [a for a in self._attempts if not a.succeeded]

    def undelivered_event_ids(self, endpoint_id: str) -> list[str]:
        """Event ids with at least one attempt to the endpoint and no success."""
        with self._lock:
            attempted: dict[str, bool] = {}
            for a in self._attempts:
                if a.endpoint_id != endpoint_id:
                    continue
                attempted[a.event_id] = attempted.get(a.event_id, False) or a.succeeded
        return [event_id for event_id, delivered in attempted.items() if not delivered]
