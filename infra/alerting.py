"""Slack notifications for order outcomes (incoming webhook or bot token)."""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import NotificationError

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api/chat.postMessage"


@dataclass
class SlackConfig:
    webhook_url: Optional[str] = None
    token: Optional[str] = None
    channel: Optional[str] = None
    timeout: float = 5.0
    api_url: str = SLACK_API_URL


class SlackNotifier:
    """
    Post plain-text messages to Slack.

    An incoming-webhook URL takes precedence; otherwise a bot token is used
    against chat.postMessage with the configured channel.
    """

    def __init__(self, config: SlackConfig) -> None:
        self._config = config

    def is_enabled(self) -> bool:
        return bool(self._config.webhook_url or self._config.token)

    def send_message(self, text: str) -> None:
        if self._config.webhook_url:
            self._post(self._config.webhook_url, {"text": text}, {}, "slack webhook failed")
            return

        if not self._config.token:
            raise NotificationError("no slack configuration provided")

        payload = {"channel": self._config.channel or "", "text": text}
        headers = {"Authorization": f"Bearer {self._config.token}"}
        self._post(self._config.api_url, payload, headers, "slack api error")

    def _post(self, url: str, payload: Dict[str, Any], extra_headers: Dict[str, str], label: str) -> None:
        try:
            data = json.dumps(payload).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise NotificationError(f"failed to encode slack payload: {exc}") from exc

        headers = {"Content-Type": "application/json", **extra_headers}
        request = urllib.request.Request(url, data=data, headers=headers, method="POST")

        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout) as response:
                if response.status >= 300:
                    raise NotificationError(f"{label}: {response.status}")
        except urllib.error.HTTPError as exc:
            raise NotificationError(f"{label}: {exc.code} {exc.reason}") from exc
        except (urllib.error.URLError, socket.timeout) as exc:
            raise NotificationError(f"{label}: {exc}") from exc

        logger.debug("Delivered slack message (%d chars)", len(payload.get("text", "")))


__all__ = ["SlackConfig", "SlackNotifier", "SLACK_API_URL"]
