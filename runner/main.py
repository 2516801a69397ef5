"""
alertbridge Runner: Service Entry Point

Wires the webhook pipeline to its collaborators and serves it over HTTP.

Flow per request:
1. Verify signature (if TV_SECRET set)
2. Decode + validate alert
3. Risk guard (cooldown, PnL circuit breaker)
4. Place order with Alpaca
5. Notify Slack (per SLACK_NOTIFY policy)
"""

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from core.exceptions import ConfigError
from core.exchange_alpaca import AlpacaClient
from core.pipeline import AlertPipeline
from core.risk import RiskGuard
from core.signature import SignatureVerifier
from infra.alerting import SlackConfig, SlackNotifier
from infra.metrics import MetricsRecorder
from infra.server import WebhookServer
from tools.config_validator import AppConfig, load_app_config

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


def configure_logging(config: AppConfig) -> None:
    handlers = [logging.StreamHandler()]
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


def build_notifier(config: AppConfig) -> Optional[SlackNotifier]:
    notify = config.notify
    if not notify.enabled:
        return None
    return SlackNotifier(SlackConfig(
        webhook_url=notify.webhook_url,
        token=notify.token,
        channel=notify.channel,
        timeout=notify.timeout_seconds,
    ))


def build_pipeline(config: AppConfig, metrics: Optional[MetricsRecorder] = None) -> AlertPipeline:
    broker = config.broker
    submitter = AlpacaClient(broker.api_key, broker.api_secret, broker.base_url, timeout=broker.timeout_seconds)
    return AlertPipeline(
        verifier=SignatureVerifier(config.webhook.secret),
        risk_guard=RiskGuard(config.risk.to_guard_config()),
        submitter=submitter,
        notifier=build_notifier(config),
        notify_policy=config.notify.notify_policy(),
        metrics=metrics,
    )


class AlertBridgeService:
    """
    Service lifecycle: build components, serve, shut down on SIGINT/SIGTERM.
    """

    def __init__(self, config: AppConfig, port: Optional[int] = None):
        self.config = config
        self.metrics = MetricsRecorder()
        self.pipeline = build_pipeline(config, metrics=self.metrics)
        self.server = WebhookServer(
            self.pipeline,
            port=config.server.port if port is None else port,
            host=config.server.host,
        )
        self._stop_event = threading.Event()

        logger.info(
            "Starting alertbridge (signature=%s, cooldown=%.1fs, pnl_check=%s, notify=%s)",
            "on" if self.pipeline.verifier.is_enabled() else "off",
            config.risk.cooldown_seconds,
            "on" if config.risk.prom_url else "off",
            config.notify.policy if config.notify.enabled else "off",
        )

    def start(self) -> None:
        self.server.start()

    def request_stop(self, *_args) -> None:
        self._stop_event.set()

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

        self.start()
        try:
            self._stop_event.wait()
        finally:
            self.stop()

    def stop(self) -> None:
        logger.info("Shutting down alertbridge")
        self.server.stop(timeout=SHUTDOWN_TIMEOUT_SECONDS)


def main(argv=None) -> int:
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="alertbridge: trading alert webhook relay")
    parser.add_argument("--config", default=None, help="Optional YAML config file")
    parser.add_argument("--port", type=int, default=None, help="Listen port (overrides PORT)")

    args = parser.parse_args(argv)

    try:
        config = load_app_config(args.config)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR, format="%(levelname)s %(name)s: %(message)s")
        logger.error("=" * 80)
        logger.error("CONFIGURATION VALIDATION FAILED")
        logger.error("=" * 80)
        for idx, error in enumerate(e.errors, start=1):
            logger.error(f"{idx:>2}. {error}")
        return 2

    configure_logging(config)
    service = AlertBridgeService(config, port=args.port)
    service.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
