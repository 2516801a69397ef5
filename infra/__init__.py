"""Infrastructure modules for alertbridge"""

from .alerting import SlackConfig, SlackNotifier  # noqa: F401
from .metrics import MetricsRecorder  # noqa: F401
from .prometheus_query import PrometheusPnLQuerier  # noqa: F401
from .server import WebhookServer  # noqa: F401

__all__ = [
	"SlackConfig",
	"SlackNotifier",
	"MetricsRecorder",
	"PrometheusPnLQuerier",
	"WebhookServer",
]
