import logging
import time
import uuid
from datetime import datetime, timezone

import requests

from src.core.errors import DeliveryError
from src.models.delivery import DeliveryAttempt
from src.models.webhook import WebhookEndpoint, WebhookEvent
from src.webhooks.events import serialize_event
from src.webhooks.logger import DeliveryLogger
from src.webhooks.signer import WebhookSigner

log = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_ID_HEADER = "X-Event-ID"
EVENT_TYPE_HEADER = "X-Event-Type"


class WebhookDeliveryEngine:
    """Makes single signed delivery attempts to webhook endpoints."""

    def __init__(self, logger: DeliveryLogger, timeout_seconds: float = 10):
        self.logger = logger
        self.timeout_seconds = timeout_seconds

    def deliver(
        self,
        event: WebhookEvent,
        endpoint: WebhookEndpoint,
        attempt_number: int = 1,
    ) -> DeliveryAttempt:
        """POST one event to one endpoint and record the attempt."""
        body = serialize_event(event)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: WebhookSigner(endpoint.secret).sign(body),
            EVENT_ID_HEADER: event.event_id,
            EVENT_TYPE_HEADER: event.event_type,
        }

        start = time.monotonic()
        status_code = None
        error = None

        try:
            status_code = self._post(endpoint.url, body, headers)
        except DeliveryError as e:
            status_code = e.status_code
            error = e.reason

        elapsed_ms = (time.monotonic() - start) * 1000

        attempt = DeliveryAttempt(
            attempt_id=f"att_{uuid.uuid4().hex[:16]}",
            event_id=event.event_id,
            endpoint_id=endpoint.endpoint_id,
            url=endpoint.url,
            attempt_number=attempt_number,
            status_code=status_code,
            timestamp=datetime.now(timezone.utc),
            response_time_ms=elapsed_ms,
            error=error,
        )
        self.logger.log(attempt)
        if error is not None:
            log.warning(
                "Delivery of %s to %s failed on attempt %d: %s",
                event.event_id, endpoint.url, attempt_number, error,
            )
        return attempt

    def _post(self, url: str, body: bytes, headers: dict[str, str]) -> int:
        """Send the body; return the 2xx status or raise DeliveryError."""
        try:
            resp = requests.post(url, data=body, headers=headers, timeout=self.timeout_seconds)
        except requests.exceptions.Timeout as e:
            raise DeliveryError(f"Timed out posting to {url}", reason="timeout") from e
        except requests.exceptions.ConnectionError as e:
            raise DeliveryError(f"Could not connect to {url}", reason="connection_error") from e
        except requests.exceptions.RequestException as e:
            raise DeliveryError(str(e), reason="transport_error") from e

        if not 200 <= resp.status_code < 300:
            raise DeliveryError(
                f"{url} answered {resp.status_code}",
                reason=f"http_{resp.status_code}",
                status_code=resp.status_code,
            )
        return resp.status_code
