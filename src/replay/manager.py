import logging

from src.storage.store import InMemoryStore
from src.webhooks.dispatcher import WebhookDispatcher
from src.webhooks.logger import DeliveryLogger

logger = logging.getLogger(__name__)


class WebhookReplayManager:
    """Re-delivers events kept in the event store.

    A replay reuses the original event id, so receivers that de-duplicate by
    id treat it as the same event. Disabled endpoints are skipped.
    """

    def __init__(self, store: InMemoryStore, dispatcher: WebhookDispatcher, logger: DeliveryLogger):
        self.store = store
        self.dispatcher = dispatcher
        self.logger = logger

    def replay_event(self, event_id: str, endpoint_id: str | None = None) -> list[str]:
        """Queue a stored event again, to one endpoint or to every subscriber.

        Returns the ids of the endpoints the event was queued for.
        """
        event = self.store.get_event(event_id)
        if endpoint_id is not None:
            endpoints = [self.store.get_endpoint(endpoint_id)]
        else:
            endpoints = self.store.list_endpoints()
        queued = self.dispatcher.deliver(event, endpoints)
        logger.info("Replayed %s to %d endpoint(s)", event_id, len(queued))
        return queued

    def replay_failed(self, endpoint_id: str) -> dict[str, list[str]]:
        """Replay every event that never reached the endpoint successfully."""
        return {
            event_id: self.replay_event(event_id, endpoint_id)
            for event_id in self.logger.undelivered_event_ids(endpoint_id)
        }
