import logging
import threading
from collections.abc import Callable

from src.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class AlertManager:
    """Raises alerts for high delivery failure rates and disabled endpoints."""

    def __init__(
        self,
        metrics: MetricsCollector,
        threshold: float = 0.10,
        callback: Callable[[dict], None] | None = None,
    ):
        self.metrics = metrics
        self.threshold = threshold
        self.callback = callback
        self._fired = False
        self._alerts: list[dict] = []
        self._lock = threading.Lock()

    def check(self) -> dict | None:
        """Fire once when the failure rate crosses the threshold.

        The alert re-arms after the rate drops back under the threshold.
        """
        total = self.metrics.total_in_window()
        if total == 0:
            return None
        rate = self.metrics.failure_rate()
        failures = self.metrics.failure_count_in_window()

        with self._lock:
            if rate <= self.threshold:
                self._fired = False
                return None
            if self._fired:
                return None
            self._fired = True

        return self._raise({
            "type": "webhook_failure_rate",
            "failure_rate": rate,
            "threshold": self.threshold,
            "total_deliveries": total,
            "failed_deliveries": failures,
            "message": (
                f"Webhook failure rate {rate:.1%} exceeds "
                f"threshold {self.threshold:.1%} "
                f"({failures}/{total} deliveries failed)"
            ),
        })

    def endpoint_disabled(self, endpoint_id: str, url: str, failures: int) -> dict:
        return self._raise({
            "type": "endpoint_disabled",
            "endpoint_id": endpoint_id,
            "url": url,
            "consecutive_failures": failures,
            "message": f"Webhook endpoint {url} disabled after {failures} failed deliveries",
        })

    def _raise(self, alert: dict) -> dict:
        with self._lock:
            self._alerts.append(alert)
        logger.warning(alert["message"])
        if self.callback:
            self.callback(alert)
        return alert

    def get_alerts(self) -> list[dict]:
        with self._lock:
            return list(self._alerts)
