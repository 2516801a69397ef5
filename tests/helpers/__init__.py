"""Test helpers for alertbridge test suite"""

from tests.helpers.stubs import (
    ALERT_BODY,
    FakeClock,
    RecordedRequest,
    RecordingNotifier,
    RecordingSubmitter,
    StaticPnLQuerier,
    StubHTTPServer,
    prometheus_empty,
    prometheus_vector,
)

__all__ = [
    "ALERT_BODY",
    "FakeClock",
    "RecordedRequest",
    "RecordingNotifier",
    "RecordingSubmitter",
    "StaticPnLQuerier",
    "StubHTTPServer",
    "prometheus_empty",
    "prometheus_vector",
]
