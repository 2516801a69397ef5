"""
alertbridge Core: Alert Pipeline

Turns one raw webhook request into at most one broker order.

Flow (each step short-circuits with its own outcome):
1. Signature present (when a secret is configured)
2. Signature valid
3. Body decodes to an alert object
4. Required fields non-empty
5. Side is buy or sell
6. Risk guard admits the bot
7. Broker accepts the order
8. Success notification
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from core.exceptions import RiskRejection
from core.signature import SignatureVerifier

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("bot", "symbol", "side", "qty")
VALID_SIDES = ("buy", "sell")


class ErrorCategory(Enum):
    NONE = "none"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    RISK = "risk"
    UPSTREAM = "upstream"


class AlertOutcome(Enum):
    ACCEPTED = ("accepted", ErrorCategory.NONE, 200)
    MISSING_SIGNATURE = ("missing_signature", ErrorCategory.AUTHENTICATION, 401)
    INVALID_SIGNATURE = ("invalid_signature", ErrorCategory.AUTHENTICATION, 401)
    MALFORMED_PAYLOAD = ("malformed_payload", ErrorCategory.VALIDATION, 400)
    MISSING_FIELDS = ("missing_fields", ErrorCategory.VALIDATION, 400)
    INVALID_SIDE = ("invalid_side", ErrorCategory.VALIDATION, 400)
    RISK_REJECTED = ("risk_rejected", ErrorCategory.RISK, 403)
    ORDER_SUBMISSION_FAILED = ("order_submission_failed", ErrorCategory.UPSTREAM, 500)

    def __init__(self, label: str, category: ErrorCategory, http_status: int):
        self.label = label
        self.category = category
        self.http_status = http_status

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.label


@dataclass
class OrderResult:
    """Broker acknowledgement for a submitted order."""
    order_id: str
    raw: Dict[str, Any] = field(default_factory=dict)


class OrderSubmitter(Protocol):
    def create_order(self, bot: str, symbol: str, side: str, qty: str) -> OrderResult:
        ...


class Notifier(Protocol):
    def send_message(self, text: str) -> None:
        ...


class RiskChecker(Protocol):
    def check(self, bot: str) -> None:
        ...


class PayloadError(ValueError):
    """Body is not a JSON alert object."""


@dataclass
class AlertRequest:
    """Inbound alert. Untrusted until validated."""
    bot: str
    symbol: str
    side: str
    qty: str
    ts: Optional[int] = None

    @classmethod
    def from_json(cls, raw_body: bytes) -> "AlertRequest":
        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise PayloadError(f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise PayloadError(f"expected JSON object, got {type(payload).__name__}")

        values = {}
        for name in REQUIRED_FIELDS:
            value = payload.get(name)
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise PayloadError(f"field '{name}' must be a string")
            values[name] = value

        ts = payload.get("ts")
        if ts is not None and (isinstance(ts, bool) or not isinstance(ts, int)):
            raise PayloadError("field 'ts' must be an integer")

        return cls(ts=ts, **values)

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]


@dataclass
class AlertResult:
    outcome: AlertOutcome
    message: str = ""
    order: Optional[OrderResult] = None
    alert: Optional[AlertRequest] = None
    missing_fields: List[str] = field(default_factory=list)
    reason: Optional[str] = None  # risk rejection label

    @property
    def accepted(self) -> bool:
        return self.outcome is AlertOutcome.ACCEPTED

    @property
    def http_status(self) -> int:
        return self.outcome.http_status

    def to_response(self) -> Dict[str, Any]:
        if self.accepted and self.order is not None:
            return self.order.raw or {"id": self.order.order_id}
        body: Dict[str, Any] = {"error": self.message, "outcome": self.outcome.label}
        if self.missing_fields:
            body["missing_fields"] = list(self.missing_fields)
        if self.reason:
            body["reason"] = self.reason
        return body


@dataclass(frozen=True)
class NotifyPolicy:
    on_success: bool = True
    on_failure: bool = False

    @classmethod
    def parse(cls, value: Optional[str]) -> "NotifyPolicy":
        """Parse a comma list such as ``"success,failure"``."""
        if value is None or not value.strip():
            value = "success"
        on_success = on_failure = False
        for item in value.split(","):
            item = item.strip().lower()
            if item == "success":
                on_success = True
            elif item == "failure":
                on_failure = True
            elif item:
                logger.warning("Ignoring unknown notify policy entry: %s", item)
        return cls(on_success=on_success, on_failure=on_failure)


class AlertPipeline:
    """
    Request-handling state machine for trading alerts.

    Holds references to its collaborators but owns no state, so one instance
    can serve concurrent requests.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        risk_guard: RiskChecker,
        submitter: OrderSubmitter,
        notifier: Optional[Notifier] = None,
        notify_policy: Optional[NotifyPolicy] = None,
        metrics=None,
    ):
        self.verifier = verifier
        self.risk_guard = risk_guard
        self.submitter = submitter
        self.notifier = notifier
        self.notify_policy = notify_policy or NotifyPolicy()
        self.metrics = metrics

    def handle(self, raw_body: bytes, signature: Optional[str] = None) -> AlertResult:
        result = self._handle(raw_body, signature)
        if self.metrics is not None:
            self.metrics.record_alert(result.outcome.label)
        return result

    def _handle(self, raw_body: bytes, signature: Optional[str]) -> AlertResult:
        if self.verifier.is_enabled():
            if signature is None:
                logger.error("Rejected alert: missing signature")
                return AlertResult(AlertOutcome.MISSING_SIGNATURE, "Missing signature")
            if not self.verifier.verify(raw_body, signature):
                logger.error("Rejected alert: invalid signature")
                return AlertResult(AlertOutcome.INVALID_SIGNATURE, "Invalid signature")

        try:
            alert = AlertRequest.from_json(raw_body)
        except PayloadError as exc:
            logger.error("Rejected alert: failed to decode request: %s", exc)
            return AlertResult(AlertOutcome.MALFORMED_PAYLOAD, "Invalid request body")

        missing = alert.missing_fields()
        if missing:
            logger.error("Rejected alert: missing required fields %s", missing)
            return AlertResult(
                AlertOutcome.MISSING_FIELDS,
                f"Missing required fields: {', '.join(missing)}",
                alert=alert,
                missing_fields=missing,
            )

        if alert.side not in VALID_SIDES:
            logger.error("Rejected alert: invalid side %r", alert.side)
            return AlertResult(AlertOutcome.INVALID_SIDE, "Invalid side", alert=alert)

        try:
            self.risk_guard.check(alert.bot)
        except RiskRejection as exc:
            logger.warning("Risk check failed for bot=%s: %s", alert.bot, exc)
            if self.metrics is not None:
                self.metrics.record_risk_rejection(exc.reason)
            if self.notify_policy.on_failure:
                self._notify(f"Alert rejected by risk guard for bot {alert.bot}: {exc}")
            return AlertResult(AlertOutcome.RISK_REJECTED, str(exc), alert=alert, reason=exc.reason)

        started = time.monotonic()
        try:
            order = self.submitter.create_order(alert.bot, alert.symbol, alert.side, alert.qty)
        except Exception as exc:
            logger.error("Failed to create order for bot=%s: %s", alert.bot, exc)
            if self.notify_policy.on_failure:
                self._notify(
                    f"Order failed for bot {alert.bot}: {alert.side} {alert.qty} {alert.symbol}: {exc}"
                )
            return AlertResult(AlertOutcome.ORDER_SUBMISSION_FAILED, "Failed to create order", alert=alert)

        if self.metrics is not None:
            self.metrics.record_order(alert.bot, alert.side, time.monotonic() - started)
        logger.info(
            "Order placed for bot=%s: %s %s %s (order_id=%s)",
            alert.bot, alert.side, alert.qty, alert.symbol, order.order_id,
        )
        if self.notify_policy.on_success:
            self._notify(
                f"Order placed for bot {alert.bot}: {alert.side} {alert.qty} {alert.symbol} (id {order.order_id})"
            )
        return AlertResult(AlertOutcome.ACCEPTED, "ok", order=order, alert=alert)

    def _notify(self, text: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send_message(text)
        except Exception as exc:
            logger.warning("Notification failed: %s", exc)


__all__ = [
    "AlertOutcome",
    "AlertPipeline",
    "AlertRequest",
    "AlertResult",
    "ErrorCategory",
    "Notifier",
    "NotifyPolicy",
    "OrderResult",
    "OrderSubmitter",
]
