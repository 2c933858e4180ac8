import logging
import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timezone

from src.core.errors import ValidationError
from src.models.webhook import EndpointStatus, WebhookEndpoint, WebhookEvent
from src.observability.alerting import AlertManager
from src.observability.metrics import MetricsCollector
from src.storage.store import InMemoryStore
from src.utils.crypto import generate_webhook_secret
from src.webhooks.engine import WebhookDeliveryEngine
from src.webhooks.events import canonical_event_types, create_event
from src.webhooks.retry import RetryManager
from src.webhooks.scheduler import DeliveryScheduler

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Turns domain events into signed, retried deliveries.

    Delivery is at-least-once: receivers de-duplicate by event id. Every
    attempt runs on the scheduler, so ``emit`` and ``deliver`` return as soon
    as the work is queued.
    """

    def __init__(
        self,
        engine: WebhookDeliveryEngine,
        store: InMemoryStore,
        scheduler: DeliveryScheduler,
        retry_manager: RetryManager | None = None,
        failure_threshold: int = 3,
        metrics: MetricsCollector | None = None,
        alerts: AlertManager | None = None,
    ):
        self.engine = engine
        self.store = store
        self.scheduler = scheduler
        self.retry_manager = retry_manager or RetryManager()
        self.failure_threshold = failure_threshold
        self.metrics = metrics
        self.alerts = alerts
        self._endpoint_lock = threading.Lock()

    def emit(self, event_type: str, data: Mapping) -> WebhookEvent:
        """Create, record and queue delivery of a new event."""
        event = create_event(event_type, data)
        self.store.append_event(event)
        self.deliver(event, self.store.list_endpoints())
        return event

    def deliver(self, event: WebhookEvent, endpoints: Iterable[WebhookEndpoint]) -> list[str]:
        """Queue an immediate attempt for every subscribed, enabled endpoint."""
        queued = []
        for endpoint in endpoints:
            if endpoint.status is EndpointStatus.DISABLED:
                continue
            if not endpoint.subscribes_to(event.event_type):
                continue
            self.scheduler.schedule(
                0, self._attempt, event, endpoint.endpoint_id, 1, None,
                key=endpoint.endpoint_id,
            )
            queued.append(endpoint.endpoint_id)
        logger.debug("Queued %s for %d endpoint(s)", event.event_id, len(queued))
        return queued

    def register_endpoint(self, url: str, events: Iterable[str]) -> WebhookEndpoint:
        """Subscribe a url to event types; aliases are stored under their canonical name."""
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ValidationError(f"Invalid webhook url {url!r}", reason="invalid_url")
        if isinstance(events, str):
            raise ValidationError("events must be a list of event types")
        subscribed = canonical_event_types(events)
        if not subscribed:
            raise ValidationError("Subscribe to at least one event type")
        endpoint = WebhookEndpoint(
            endpoint_id=f"we_{uuid.uuid4().hex[:16]}",
            url=url,
            events=subscribed,
            secret=generate_webhook_secret(),
            created_at=datetime.now(timezone.utc),
        )
        self.store.add_endpoint(endpoint)
        logger.info("Registered webhook endpoint %s for %s", endpoint.endpoint_id, ", ".join(subscribed))
        return endpoint

    def enable_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        """Re-enable an endpoint after a human has fixed it."""
        with self._endpoint_lock:
            endpoint = replace(
                self.store.get_endpoint(endpoint_id),
                status=EndpointStatus.ACTIVE,
                consecutive_failures=0,
            )
            self.store.save_endpoint(endpoint)
        logger.info("Webhook endpoint %s re-enabled", endpoint_id)
        return endpoint

    def _attempt(
        self,
        event: WebhookEvent,
        endpoint_id: str,
        attempt_number: int,
        first_failure_at: float | None,
    ) -> None:
        endpoint = self.store.get_endpoint(endpoint_id)
        if endpoint.status is EndpointStatus.DISABLED:
            logger.info("Dropping %s for disabled endpoint %s", event.event_id, endpoint_id)
            return

        attempt = self.engine.deliver(event, endpoint, attempt_number)
        if self.metrics is not None:
            self.metrics.record_delivery(attempt.succeeded, endpoint_id)
        if self.alerts is not None:
            self.alerts.check()

        if attempt.succeeded:
            self._record_outcome(endpoint_id, succeeded=True)
            return

        retries_made = attempt_number - 1
        if not (
            self.retry_manager.should_retry(attempt.status_code)
            and self.retry_manager.has_attempts_remaining(retries_made)
        ):
            logger.warning(
                "Giving up on %s for endpoint %s after %d attempt(s)",
                event.event_id, endpoint_id, attempt_number,
            )
            self._record_outcome(endpoint_id, succeeded=False)
            return

        if first_failure_at is None:
            first_failure_at = self.scheduler.now()
        due = first_failure_at + self.retry_manager.offset(retries_made)
        self.scheduler.schedule(
            due - self.scheduler.now(),
            self._attempt, event, endpoint_id, attempt_number + 1, first_failure_at,
            key=endpoint_id,
        )

    def _record_outcome(self, endpoint_id: str, succeeded: bool) -> None:
        with self._endpoint_lock:
            endpoint = self.store.get_endpoint(endpoint_id)
            if endpoint.status is EndpointStatus.DISABLED:
                return
            if succeeded:
                updated = replace(endpoint, status=EndpointStatus.ACTIVE, consecutive_failures=0)
            else:
                failures = endpoint.consecutive_failures + 1
                status = (
                    EndpointStatus.DISABLED
                    if failures >= self.failure_threshold
                    else EndpointStatus.FAILING
                )
                updated = replace(endpoint, status=status, consecutive_failures=failures)
            self.store.save_endpoint(updated)

        if updated.status is EndpointStatus.DISABLED:
            dropped = self.scheduler.cancel(endpoint_id)
            logger.error(
                "Webhook endpoint %s disabled after %d failed deliveries (%d queued retries dropped)",
                endpoint_id, updated.consecutive_failures, dropped,
            )
            if self.alerts is not None:
                self.alerts.endpoint_disabled(endpoint_id, updated.url, updated.consecutive_failures)
