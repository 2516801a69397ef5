"""
Service wiring and entry point.
"""
import logging
import signal
from unittest.mock import patch

import pytest
import requests

from core.exceptions import ConfigError
from core.exchange_alpaca import AlpacaClient
from core.signature import sign
from infra.alerting import SlackNotifier
from runner.main import AlertBridgeService, build_notifier, build_pipeline, main
from tests.helpers import ALERT_BODY, StubHTTPServer
from tools.config_validator import load_app_config


def test_build_pipeline_from_environment():
    config = load_app_config(environ={
        "TV_SECRET": "s",
        "COOLDOWN_SEC": "10",
        "PROM_URL": "http://prom:9090",
        "ALP_KEY": "k",
        "ALP_SECRET": "x",
    })
    pipeline = build_pipeline(config)

    assert pipeline.verifier.is_enabled()
    assert pipeline.risk_guard.pnl_check_enabled
    assert isinstance(pipeline.submitter, AlpacaClient)
    assert pipeline.notifier is None


def test_build_notifier_only_when_configured():
    assert build_notifier(load_app_config(environ={})) is None
    notifier = build_notifier(load_app_config(environ={"SLACK_WEBHOOK_URL": "https://hooks.example/x"}))
    assert isinstance(notifier, SlackNotifier)


def test_build_notifier_uses_validated_settings(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text("notify:\n  timeout_seconds: 2\n")
    config = load_app_config(str(path), environ={"SLACK_TOKEN": "xoxb-1", "SLACK_CHANNEL": "#trades"})

    notifier = build_notifier(config)

    assert notifier._config.token == "xoxb-1"
    assert notifier._config.channel == "#trades"
    assert notifier._config.webhook_url is None
    assert notifier._config.timeout == 2.0


def test_invalid_notify_timeout_rejected_before_notifier_built(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text("notify:\n  timeout_seconds: soon\n")
    with pytest.raises(ConfigError, match="timeout_seconds"):
        load_app_config(str(path), environ={"SLACK_WEBHOOK_URL": "https://hooks.example/x"})


def test_service_relays_signed_alert_to_broker():
    def broker(request):
        return 200, {"id": "ord-9", **request.json()}

    with StubHTTPServer(broker) as alpaca:
        config = load_app_config(environ={
            "TV_SECRET": "s",
            "ALP_KEY": "k",
            "ALP_SECRET": "x",
            "ALP_BASE": alpaca.url,
        })
        service = AlertBridgeService(config, port=0)
        service.start()
        try:
            response = requests.post(
                f"http://127.0.0.1:{service.server.port}/hook",
                data=ALERT_BODY,
                headers={"X-TV-Signature": sign("s", ALERT_BODY)},
                timeout=5,
            )
        finally:
            service.stop()

    assert response.status_code == 200
    assert response.json()["id"] == "ord-9"
    assert alpaca.requests[0].path == "/v2/orders"
    assert service.metrics.alert_counts() == {"accepted": 1}


def test_run_forever_installs_handlers_and_stops():
    service = AlertBridgeService(load_app_config(environ={}), port=0)
    service.request_stop()  # already signalled, so run_forever returns immediately

    with patch("runner.main.signal.signal") as mock_signal:
        service.run_forever()

    installed = {call.args[0] for call in mock_signal.call_args_list}
    assert installed == {signal.SIGINT, signal.SIGTERM}
    assert service.server.port is None


def test_main_returns_2_on_invalid_config(monkeypatch, caplog):
    monkeypatch.setenv("COOLDOWN_SEC", "soon")
    with caplog.at_level(logging.ERROR):
        assert main([]) == 2
    assert "COOLDOWN_SEC" in caplog.text


def test_main_returns_2_on_missing_config_file(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml")]) == 2
