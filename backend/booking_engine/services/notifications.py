"""Best-effort booking notifications.

Notifications are published only after the state change has been committed.
Delivery failures are logged and swallowed: a confirmed booking stays
confirmed whether or not the webhook answered.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from fastapi import BackgroundTasks

from booking_engine.core.config import Settings, settings
from booking_engine.core.metrics import metrics

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Writes the notification to the log. Used when no webhook is configured."""

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification %s: %s", event, payload)


class WebhookNotifier:
    """POSTs ``{"event": ..., "data": ...}`` to a configured URL."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        body = {"event": event, "data": payload}
        if self._client is not None:
            response = self._client.post(self.url, json=body, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=body)
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"Webhook answered {response.status_code}",
                request=response.request,
                response=response,
            )


def build_notifier(config: Settings = settings) -> Notifier:
    if config.notify_webhook_url:
        return WebhookNotifier(config.notify_webhook_url, timeout=config.notify_timeout_seconds)
    return LoggingNotifier()


def deliver(notifier: Notifier, event: str, payload: Dict[str, Any]) -> bool:
    """Deliver one notification. Never raises."""
    try:
        notifier.notify(event, payload)
        return True
    except httpx.HTTPError as e:
        logger.warning("Notification %s delivery failed: %s", event, e)
    except Exception:
        logger.exception("Notification %s delivery failed", event)
    metrics.inc("notifications_failed_total")
    return False


class NotificationDispatcher:
    """Hands committed events to a notifier.

    With ``background_tasks`` the delivery runs after the HTTP response is
    sent; without it (scripts, tests) it runs inline but still never raises.
    """

    def __init__(self, notifier: Optional[Notifier] = None, background_tasks: Optional[BackgroundTasks] = None):
        self.notifier = notifier or build_notifier()
        self.background_tasks = background_tasks

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        if self.background_tasks is not None:
            self.background_tasks.add_task(deliver, self.notifier, event, payload)
        else:
            deliver(self.notifier, event, payload)
