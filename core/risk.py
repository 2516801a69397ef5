"""
alertbridge Core: Risk Guard

Two gates, evaluated in order, first failure wins:
1. Per-bot cooldown (disabled when cooldown_seconds == 0)
2. PnL circuit breaker backed by a Prometheus query (disabled when no
   endpoint is configured)

The cooldown gate is fail-open when unconfigured. The PnL gate is fail-open
only when unconfigured and fail-closed on any query problem.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from core.exceptions import (
    CooldownActive,
    MetricsQueryError,
    PnLBelowMin,
    PnLCheckFailed,
    PnLExceedsMax,
)

logger = logging.getLogger(__name__)

DEFAULT_PNL_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class RiskGuardConfig:
    """Immutable guard settings. Defaults disable every gate."""
    cooldown_seconds: float = 0.0
    pnl_endpoint: Optional[str] = None
    pnl_max: Optional[float] = None  # None = no ceiling
    pnl_min: float = 0.0  # 0 = disabled, so a floor of exactly 0 never triggers
    pnl_timeout_seconds: float = DEFAULT_PNL_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.cooldown_seconds < 0:
            raise ValueError(f"cooldown_seconds must be >= 0, got {self.cooldown_seconds}")
        if self.pnl_timeout_seconds <= 0:
            raise ValueError(f"pnl_timeout_seconds must be > 0, got {self.pnl_timeout_seconds}")

    @property
    def cooldown_enabled(self) -> bool:
        return self.cooldown_seconds > 0

    @property
    def pnl_min_enabled(self) -> bool:
        return self.pnl_min != 0


class MetricsQuerier(Protocol):
    def query_pnl(self, bot: str) -> Optional[float]:
        ...


class CooldownStore(ABC):
    """
    Storage for last-accepted alert timestamps, keyed by bot.

    ``get`` and ``record`` are individually thread-safe. Callers must not
    assume a get followed by a record is atomic.
    """

    @abstractmethod
    def get(self, bot: str) -> Optional[float]:
        ...

    @abstractmethod
    def record(self, bot: str, timestamp: float) -> None:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...


class InMemoryCooldownStore(CooldownStore):
    """Lock-protected dict. Entries are never evicted."""

    def __init__(self):
        self._last_alert: Dict[str, float] = {}
        self._lock = threading.Lock()

    def get(self, bot: str) -> Optional[float]:
        with self._lock:
            return self._last_alert.get(bot)

    def record(self, bot: str, timestamp: float) -> None:
        with self._lock:
            self._last_alert[bot] = timestamp

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_alert)


class RiskGuard:
    """
    Per-bot admission control for inbound alerts.

    ``check`` returns None when the alert may proceed and raises a
    RiskRejection subclass otherwise:
    - CooldownActive: bot alerted again inside its cooldown window
    - PnLExceedsMax / PnLBelowMin: queried PnL crossed a threshold
    - PnLCheckFailed: PnL endpoint configured but the query failed

    Concurrent first alerts for the same bot may both pass the cooldown gate;
    the read and the write take the store lock separately. This is a
    best-effort rate limiter, not a mutex.
    """

    def __init__(
        self,
        config: Optional[RiskGuardConfig] = None,
        pnl_querier: Optional[MetricsQuerier] = None,
        store: Optional[CooldownStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RiskGuardConfig()
        self._store = store if store is not None else InMemoryCooldownStore()
        self._clock = clock

        if pnl_querier is None and self.config.pnl_endpoint:
            from infra.prometheus_query import PrometheusPnLQuerier
            pnl_querier = PrometheusPnLQuerier(
                self.config.pnl_endpoint,
                timeout=self.config.pnl_timeout_seconds,
            )
        self._pnl_querier = pnl_querier

        logger.info(
            "Initialized RiskGuard (cooldown=%.1fs, pnl_check=%s, pnl_max=%s, pnl_min=%s)",
            self.config.cooldown_seconds,
            "on" if self._pnl_querier is not None else "off",
            self.config.pnl_max,
            self.config.pnl_min if self.config.pnl_min_enabled else None,
        )

    @property
    def store(self) -> CooldownStore:
        return self._store

    @property
    def pnl_check_enabled(self) -> bool:
        return self._pnl_querier is not None

    def check(self, bot: str) -> None:
        self._check_cooldown(bot)
        self._check_pnl(bot)

    def _check_cooldown(self, bot: str) -> None:
        if not self.config.cooldown_enabled:
            return

        cooldown = self.config.cooldown_seconds
        now = self._clock()
        last_alert = self._store.get(bot)
        if last_alert is not None:
            elapsed = now - last_alert
            if elapsed < cooldown:
                remaining = cooldown - elapsed
                logger.warning(
                    "Cooldown check failed for bot=%s (elapsed=%.3fs, cooldown=%.1fs)",
                    bot, elapsed, cooldown,
                )
                raise CooldownActive(bot, remaining)

        # Separate lock acquisition from the read above
        self._store.record(bot, now)
        logger.debug("Cooldown check passed for bot=%s (cooldown=%.1fs)", bot, cooldown)

    def _check_pnl(self, bot: str) -> None:
        if self._pnl_querier is None:
            logger.debug("PnL check skipped for bot=%s: no endpoint configured", bot)
            return

        try:
            pnl = self._pnl_querier.query_pnl(bot)
        except MetricsQueryError as exc:
            logger.error("PnL query failed for bot=%s, rejecting alert: %s", bot, exc)
            raise PnLCheckFailed(bot, exc) from exc
        except Exception as exc:
            logger.exception("Unexpected PnL query error for bot=%s, rejecting alert", bot)
            raise PnLCheckFailed(bot, exc) from exc

        if pnl is None:
            logger.debug("No PnL data for bot=%s", bot)
            return

        cfg = self.config
        logger.debug("PnL check bot=%s pnl=%.4f max=%s min=%s", bot, pnl, cfg.pnl_max, cfg.pnl_min)

        if cfg.pnl_max is not None and pnl > cfg.pnl_max:
            logger.warning("PnL exceeds maximum for bot=%s: %.2f > %.2f", bot, pnl, cfg.pnl_max)
            raise PnLExceedsMax(bot, pnl, cfg.pnl_max)

        if cfg.pnl_min_enabled and pnl < cfg.pnl_min:
            logger.warning("PnL below minimum for bot=%s: %.2f < %.2f", bot, pnl, cfg.pnl_min)
            raise PnLBelowMin(bot, pnl, cfg.pnl_min)


__all__ = [
    "CooldownStore",
    "InMemoryCooldownStore",
    "MetricsQuerier",
    "RiskGuard",
    "RiskGuardConfig",
]
