"""Best-effort notification delivery over an HTTP webhook."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import httpx

from .models import UserProfile, utcnow

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Posts notification events to a webhook from background threads.

    `notify` never raises; it reports delivery with a boolean. `dispatch`
    hands the call to the executor and returns immediately.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout: float = 10.0,
        max_workers: int = 2,
    ):
        """Initialize the dispatcher."""
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify"
        )

    def close(self):
        """Wait for queued deliveries and stop the worker threads."""
        self._executor.shutdown(wait=True)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def notify(self, kind: str, recipient: UserProfile, payload: dict[str, Any]) -> bool:
        """
        Deliver one notification synchronously.

        Args:
            kind: Event kind, e.g. "expense_added"
            recipient: User to notify
            payload: Event details (must be JSON-serializable after str())

        Returns:
            True if the webhook accepted the event, False otherwise
        """
        if not self.webhook_url:
            logger.debug(f"No webhook configured, dropping {kind} for {recipient.id}")
            return False

        body = {
            "kind": kind,
            "recipient": recipient.model_dump(mode="json"),
            "payload": {key: _jsonable(value) for key, value in payload.items()},
            "sent_at": utcnow().isoformat(),
        }

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.webhook_url, json=body)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver {kind} notification to {recipient.id}: {e}")
            return False

        logger.info(f"Delivered {kind} notification to {recipient.id}")
        return True

    def dispatch(
        self, kind: str, recipient: UserProfile, payload: dict[str, Any]
    ) -> Future[bool]:
        """Queue a notification for background delivery."""
        future = self._executor.submit(self.notify, kind, recipient, payload)
        future.add_done_callback(_log_unexpected_failure)
        return future


def _jsonable(value: Any) -> Any:
    if isinstance(value, str | int | float | bool) or value is None:
        return value
    if isinstance(value, list | tuple):
        return [_jsonable(v) for v in value]
    return str(value)


def _log_unexpected_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error(f"Notification worker crashed: {error!r}")
