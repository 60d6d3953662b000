"""Requester notifications sent once a change-request is open."""

from __future__ import annotations

import abc
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from .config import RepoflowConfig, load_config
from .contracts import NotifyInput, utcnow
from .errors import NetworkTimeout, TransientServiceError, error_for_status

logger = logging.getLogger(__name__)


def render_notification(data: NotifyInput) -> Dict[str, Any]:
    files = ", ".join(data.changes.files_modified) or "(none)"
    body = (
        "Your coding agent workflow has completed successfully!\n\n"
        f"Status: {data.status}\n"
        f"Pull Request: {data.pr_url}\n"
        f"Files Modified: {files}\n\n"
        "Review and merge your changes at the link above."
    )
    return {
        "to": data.recipient,
        "subject": "AI Coding Agent - Changes Complete",
        "body": body,
        "timestamp": utcnow().isoformat(),
    }


class Notifier(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def send(self, data: NotifyInput) -> str:
        """Deliver the notification and return its identifier."""
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Logs the notification instead of delivering it."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def send(self, data: NotifyInput) -> str:
        notification = render_notification(data)
        self.sent.append(notification)
        logger.info(f"Notification prepared for {data.recipient}: {data.pr_url}")
        return f"notif_{uuid.uuid4().hex[:12]}"


class WebhookNotifier(Notifier):
    """POSTs the notification as JSON to a webhook."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, data: NotifyInput) -> str:
        notification = render_notification(data)
        notification["id"] = f"notif_{uuid.uuid4().hex[:12]}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=notification)
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(f"Notification webhook timed out: {self.url}") from exc
        except httpx.TransportError as exc:
            raise TransientServiceError(f"Notification webhook failed: {exc}") from exc
        if not response.is_success:
            raise error_for_status(
                response.status_code,
                f"Notification webhook returned {response.status_code}",
            )
        return notification["id"]


def get_notifier(config: Optional[RepoflowConfig] = None) -> Notifier:
    config = config or load_config()
    if config.notify.webhook_url:
        return WebhookNotifier(config.notify.webhook_url, timeout=config.notify.timeout)
    return LoggingNotifier()
