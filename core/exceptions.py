"""Shared exception types for alert admission, risk gating and order relay."""

from typing import Optional


class AlertBridgeError(RuntimeError):
    """Base class for every error raised by alertbridge components."""


class ConfigError(ValueError):
    """Raised when configuration cannot be parsed or fails validation."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


# ===== Risk rejections =====

class RiskRejection(AlertBridgeError):
    """Alert blocked by risk policy. ``reason`` is a short machine label."""

    reason = "risk"

    def __init__(self, bot: str, message: str):
        super().__init__(message)
        self.bot = bot


class CooldownActive(RiskRejection):
    reason = "cooldown"

    def __init__(self, bot: str, remaining: float):
        super().__init__(bot, f"cooldown period not elapsed for bot {bot} ({remaining:.2f}s remaining)")
        self.remaining = remaining


class PnLExceedsMax(RiskRejection):
    reason = "pnl_max"

    def __init__(self, bot: str, pnl: float, maximum: float):
        super().__init__(bot, f"pnl {pnl:.2f} exceeds max {maximum:.2f}")
        self.pnl = pnl
        self.maximum = maximum


class PnLBelowMin(RiskRejection):
    reason = "pnl_min"

    def __init__(self, bot: str, pnl: float, minimum: float):
        super().__init__(bot, f"pnl {pnl:.2f} below min {minimum:.2f}")
        self.pnl = pnl
        self.minimum = minimum


class PnLCheckFailed(RiskRejection):
    """PnL could not be determined; the breaker fails closed."""

    reason = "pnl_query"

    def __init__(self, bot: str, original: Optional[Exception] = None):
        super().__init__(bot, f"pnl check failed for bot {bot}: {original}")
        self.original = original


# ===== Metrics query =====

class MetricsQueryError(AlertBridgeError):
    """Raised when the PnL metric cannot be fetched or understood."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        super().__init__(source)
        self.source = source
        self.original = original


class MetricsTransportError(MetricsQueryError):
    pass


class MetricsStatusError(MetricsQueryError):
    def __init__(self, source: str, status_code: int):
        super().__init__(source)
        self.status_code = status_code


class MetricsDecodeError(MetricsQueryError):
    pass


class MetricsValueError(MetricsQueryError):
    pass


# ===== Upstream collaborators =====

class OrderSubmissionError(AlertBridgeError):
    """Broker rejected the order or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, original: Optional[Exception] = None):
        super().__init__(message)
        self.status_code = status_code
        self.original = original


class NotificationError(AlertBridgeError):
    """Chat notification could not be delivered."""
