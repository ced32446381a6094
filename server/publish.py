"""Best-effort real-time distribution of stored events to a webhook."""

import logging

import requests

from config import RealtimeConfig

logger = logging.getLogger(__name__)


class WebhookPublisher:
    """Publishes ``(tracker_id, message)`` pairs by POSTing them as JSON.

    Delivery failures are logged; the event is already stored at this point,
    so they never fail the ingestion.
    """

    def __init__(self, config: RealtimeConfig, session: requests.Session | None = None):
        self.url = config.publish_url
        self.timeout = config.timeout_seconds
        self.http = session or requests.Session()

    def __call__(self, tracker_id: int, message: dict) -> bool:
        try:
            resp = self.http.post(
                self.url,
                json={"trackerId": tracker_id, "message": message},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Failed to publish event for tracker %d to %s: %s", tracker_id, self.url, e)
            return False
        logger.debug("Published event for tracker %d (status %d)", tracker_id, resp.status_code)
        return True
