"""
Configuration Validation Module

Builds the service configuration from an optional YAML file plus environment
variables and validates it against Pydantic schemas once, at startup.
Invalid values are reported, never silently replaced by defaults.

Usage:
    from tools.config_validator import load_app_config

    try:
        config = load_app_config("config/app.yaml")
    except ConfigError as e:
        for error in e.errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
import os
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import ConfigError
from core.exchange_alpaca import ALPACA_PAPER_BASE
from core.pipeline import NotifyPolicy
from core.risk import DEFAULT_PNL_TIMEOUT_SECONDS, RiskGuardConfig

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ===== Schema =====
class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BrokerConfig(_Section):
    """Alpaca connection"""
    api_key: str = Field(default="", description="Alpaca API key id")
    api_secret: str = Field(default="", description="Alpaca API secret key")
    base_url: str = Field(default=ALPACA_PAPER_BASE, description="Alpaca trading API base URL")
    timeout_seconds: float = Field(default=10.0, gt=0, le=120, description="Order submission timeout")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class WebhookConfig(_Section):
    """Inbound webhook authentication"""
    secret: str = Field(default="", description="Shared HMAC secret; empty disables signature checks")


class RiskConfig(_Section):
    """Risk guard parameters"""
    cooldown_seconds: float = Field(default=0.0, ge=0, description="Per-bot cooldown; 0 disables")
    prom_url: Optional[str] = Field(default=None, description="Prometheus base URL; unset disables PnL checks")
    prom_timeout_seconds: float = Field(default=DEFAULT_PNL_TIMEOUT_SECONDS, gt=0, le=60, description="PnL query timeout")
    pnl_max: Optional[float] = Field(default=None, allow_inf_nan=False, description="Reject alerts when PnL exceeds this")
    pnl_min: float = Field(default=0.0, allow_inf_nan=False, description="Reject alerts when PnL is below this; 0 disables")

    @field_validator("prom_url")
    @classmethod
    def validate_prom_url(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"prom_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    def to_guard_config(self) -> RiskGuardConfig:
        return RiskGuardConfig(
            cooldown_seconds=self.cooldown_seconds,
            pnl_endpoint=self.prom_url,
            pnl_max=self.pnl_max,
            pnl_min=self.pnl_min,
            pnl_timeout_seconds=self.prom_timeout_seconds,
        )


class NotifyConfig(_Section):
    """Slack notifications"""
    webhook_url: Optional[str] = Field(default=None, description="Slack incoming webhook URL")
    token: Optional[str] = Field(default=None, description="Slack bot token (used when no webhook)")
    channel: Optional[str] = Field(default=None, description="Channel for token-based posting")
    policy: str = Field(default="success", description="Comma list of 'success' and/or 'failure'")
    timeout_seconds: float = Field(default=5.0, gt=0, le=60)

    @field_validator("policy")
    @classmethod
    def normalize_policy(cls, v: str) -> str:
        # Unknown entries are dropped with a warning by NotifyPolicy.parse
        entries = [item.strip().lower() for item in v.split(",") if item.strip()]
        return ",".join(entries) or "success"

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url or self.token)

    def notify_policy(self) -> NotifyPolicy:
        return NotifyPolicy.parse(self.policy)


class ServerConfig(_Section):
    """HTTP listener"""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=0, le=65535)


class LoggingConfig(_Section):
    level: str = Field(default="INFO")
    file: Optional[str] = Field(default=None, description="Optional log file in addition to stderr")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}, got {v!r}")
        return level


class AppConfig(_Section):
    """Complete service configuration"""
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Environment variable -> (section, field)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "ALP_KEY": ("broker", "api_key"),
    "ALP_SECRET": ("broker", "api_secret"),
    "ALP_BASE": ("broker", "base_url"),
    "TV_SECRET": ("webhook", "secret"),
    "COOLDOWN_SEC": ("risk", "cooldown_seconds"),
    "PROM_URL": ("risk", "prom_url"),
    "PROM_TIMEOUT_SEC": ("risk", "prom_timeout_seconds"),
    "PNL_MAX": ("risk", "pnl_max"),
    "PNL_MIN": ("risk", "pnl_min"),
    "SLACK_WEBHOOK_URL": ("notify", "webhook_url"),
    "SLACK_TOKEN": ("notify", "token"),
    "SLACK_CHANNEL": ("notify", "channel"),
    "SLACK_NOTIFY": ("notify", "policy"),
    "PORT": ("server", "port"),
    "LOG_LEVEL": ("logging", "level"),
}


# ===== Loading =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""

    message = f"Malformed YAML in {file_path}: {error}"
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return message

    line = getattr(mark, "line", None)
    column = getattr(mark, "column", None)
    if line is None or column is None:
        return message

    try:
        raw_lines = file_path.read_text().splitlines()
    except OSError:
        return (
            f"Malformed YAML in {file_path}: line {line + 1}, column {column + 1}: "
            f"{getattr(error, 'problem', str(error))}"
        )

    start = max(line - 2, 0)
    end = min(line + 3, len(raw_lines))

    snippet_lines: List[str] = []
    for idx in range(start, end):
        pointer = "▶" if idx == line else " "
        snippet_lines.append(f"{pointer} {idx + 1:04d} | {raw_lines[idx]}")

    snippet = "\n".join(snippet_lines)
    problem = getattr(error, "problem", str(error))

    return (
        f"Malformed YAML in {file_path}: line {line + 1}, column {column + 1}: {problem}\n"
        f"Context:\n{snippet}"
    )


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"Top level of {file_path} must be a mapping, got {type(data).__name__}")
    return data


def _expand_env(value: Any, environ: Mapping[str, str]) -> Any:
    """Expand ${VAR} placeholders in string values from ``environ``, recursively."""
    if isinstance(value, str) and "${" in value:
        return Template(value).safe_substitute(environ)
    if isinstance(value, dict):
        return {key: _expand_env(item, environ) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item, environ) for item in value]
    return value


def apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlay non-empty environment variables onto the raw config mapping."""
    merged = {section: dict(values or {}) for section, values in data.items()}
    for env_key, (section, field) in ENV_OVERRIDES.items():
        raw = environ.get(env_key)
        if raw is None or raw.strip() == "":
            continue
        merged.setdefault(section, {})[field] = raw.strip()
    return merged


def _format_validation_error(error: ValidationError, source: str) -> List[str]:
    env_by_field = {value: key for key, value in ENV_OVERRIDES.items()}
    messages = []
    for item in error.errors():
        loc = tuple(str(part) for part in item["loc"])
        field = " -> ".join(loc)
        env_key = env_by_field.get(loc[:2]) if len(loc) >= 2 else None
        hint = f" (env {env_key})" if env_key else ""
        messages.append(f"{source}: {field}{hint}: {item['msg']}")
    return messages


def validate_sanity_checks(config: AppConfig) -> List[str]:
    """Cross-field checks the per-field schema cannot express."""
    errors: List[str] = []
    risk = config.risk
    if risk.pnl_max is not None and risk.pnl_min != 0 and risk.pnl_min > risk.pnl_max:
        errors.append(f"risk: pnl_min ({risk.pnl_min}) must be <= pnl_max ({risk.pnl_max})")
    if risk.prom_url is None and (risk.pnl_max is not None or risk.pnl_min != 0):
        logger.warning("PnL thresholds configured without prom_url; PnL checks are disabled")
    if config.notify.token and not config.notify.webhook_url and not config.notify.channel:
        errors.append("notify: channel is required when posting with a Slack token")
    if not config.broker.api_key or not config.broker.api_secret:
        logger.warning("Alpaca credentials (ALP_KEY/ALP_SECRET) are not set")
    return errors


def load_app_config(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load, merge and validate configuration.

    Precedence (lowest first): schema defaults, YAML file, environment.

    Raises:
        ConfigError: listing every problem found
    """
    environ = os.environ if environ is None else environ
    source = "environment"
    data: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        source = path.name
        try:
            data = _expand_env(load_yaml_file(path), environ)
        except FileNotFoundError as e:
            raise ConfigError(f"{source}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"{source}: Invalid YAML - {e}") from e

    bad_sections = [key for key, value in data.items() if value is not None and not isinstance(value, dict)]
    if bad_sections:
        raise ConfigError([f"{source}: section '{key}' must be a mapping" for key in bad_sections])

    merged = apply_env_overrides(data, environ)

    try:
        config = AppConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e, source)) from e

    errors = validate_sanity_checks(config)
    if errors:
        raise ConfigError(errors)

    logger.info("✅ Configuration validation passed")
    return config


__all__ = [
    "AppConfig",
    "BrokerConfig",
    "LoggingConfig",
    "NotifyConfig",
    "RiskConfig",
    "ServerConfig",
    "WebhookConfig",
    "apply_env_overrides",
    "load_app_config",
    "load_yaml_file",
]
