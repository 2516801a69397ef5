"""PnL lookup against the Prometheus HTTP query API."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

import requests
from requests import exceptions as requests_exceptions

from core.exceptions import (
    MetricsDecodeError,
    MetricsStatusError,
    MetricsTransportError,
    MetricsValueError,
)

logger = logging.getLogger(__name__)


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class PrometheusPnLQuerier:
    """
    Fetch the latest ``pnl{bot="..."}`` sample for a bot.

    Returns the value as a float, or None when Prometheus has no series for
    the bot. Every other problem raises a MetricsQueryError subclass so the
    caller can fail closed.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        metric: str = "pnl",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)
        self._session = session or requests.Session()
        self._metric = metric

    def build_query(self, bot: str) -> str:
        return f'{self._metric}{{bot="{_escape_label_value(bot)}"}}'

    def endpoint_for(self, bot: str) -> str:
        return f"{self._base_url}/api/v1/query?{urlencode({'query': self.build_query(bot)})}"

    def query_pnl(self, bot: str) -> Optional[float]:
        endpoint = self.endpoint_for(bot)
        logger.debug("Querying Prometheus for PnL: bot=%s endpoint=%s", bot, endpoint)

        try:
            response = self._session.get(endpoint, timeout=self._timeout)
        except requests_exceptions.RequestException as exc:
            logger.error("Failed to query Prometheus for bot=%s (%s): %s", bot, endpoint, exc)
            raise MetricsTransportError(f"failed to query Prometheus: {exc}", exc) from exc

        if response.status_code != 200:
            logger.error(
                "Prometheus query failed for bot=%s: status=%s endpoint=%s",
                bot, response.status_code, endpoint,
            )
            raise MetricsStatusError(
                f"Prometheus query failed with status code {response.status_code} for endpoint {endpoint}",
                response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Failed to decode Prometheus response for bot=%s: %s", bot, exc)
            raise MetricsDecodeError(f"failed to decode Prometheus response: {exc}", exc) from exc

        result = self._extract_result(payload)
        if not result:
            logger.debug("No PnL data found for bot=%s", bot)
            return None

        sample = result[0]
        if not isinstance(sample, dict):
            raise MetricsDecodeError(f"unexpected Prometheus response: sample is {type(sample).__name__}")

        value = sample.get("value")
        if value is not None and not isinstance(value, list):
            raise MetricsDecodeError(f"unexpected Prometheus response: value is {type(value).__name__}")
        if not value or len(value) < 2:
            logger.debug("No PnL data found for bot=%s", bot)
            return None

        raw = value[1]
        if not isinstance(raw, str):
            logger.error("Unexpected PnL value type for bot=%s: %r", bot, raw)
            raise MetricsValueError(f"unexpected PnL value type: {type(raw).__name__}")

        try:
            return float(raw)
        except ValueError as exc:
            logger.error("Invalid PnL value for bot=%s: %r", bot, raw)
            raise MetricsValueError(f"invalid PnL value: {raw!r}", exc) from exc

    @staticmethod
    def _extract_result(payload) -> list:
        if not isinstance(payload, dict):
            raise MetricsDecodeError(f"unexpected Prometheus response: {type(payload).__name__}")
        # Absent or null means no data; any other non-matching type is malformed
        data = payload.get("data")
        if data is None:
            return []
        if not isinstance(data, dict):
            raise MetricsDecodeError("unexpected Prometheus response: data is not an object")
        result = data.get("result")
        if result is None:
            return []
        if not isinstance(result, list):
            raise MetricsDecodeError("unexpected Prometheus response: result is not a list")
        return result


__all__ = ["PrometheusPnLQuerier"]
