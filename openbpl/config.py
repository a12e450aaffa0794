"""Configuration loading, defaults and validation."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

VALID_STORAGE_TYPES = ("memory", "sqlite", "postgres")
VALID_LOG_LEVELS = ("debug", "info", "warn", "error")


class ConfigError(Exception):
    """Raised when a configuration cannot be loaded or is invalid."""


@dataclass
class CertstreamConfig:
    enabled: bool = False
    url: str = ""
    keywords: list[str] = field(default_factory=list)


@dataclass
class SourcesConfig:
    certstream: CertstreamConfig = field(default_factory=CertstreamConfig)


@dataclass
class MonitoringConfig:
    sources: SourcesConfig = field(default_factory=SourcesConfig)


@dataclass
class HTMLContentConfig:
    enabled: bool = False
    timeout: str = ""
    user_agent: str = ""


@dataclass
class FaviconConfig:
    enabled: bool = False
    timeout: str = ""


@dataclass
class EnrichmentConfig:
    html_content: HTMLContentConfig = field(default_factory=HTMLContentConfig)
    favicon: FaviconConfig = field(default_factory=FaviconConfig)


@dataclass
class FaviconSimilarityConfig:
    enabled: bool = False
    threshold: float = 0.0
    reference_favicons: dict[str, str] = field(default_factory=dict)


@dataclass
class RulesConfig:
    favicon_similarity: FaviconSimilarityConfig = field(
        default_factory=FaviconSimilarityConfig
    )


@dataclass
class SMTPConfig:
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""


@dataclass
class EmailAbuseConfig:
    enabled: bool = False
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    from_: str = field(default="", metadata={"key": "from"})


@dataclass
class LoggerConfig:
    enabled: bool = False


@dataclass
class EnforcementConfig:
    email_abuse: EmailAbuseConfig = field(default_factory=EmailAbuseConfig)
    logger: LoggerConfig = field(default_factory=LoggerConfig)


@dataclass
class StorageConfig:
    type: str = ""


@dataclass
class LoggingConfig:
    level: str = ""
    format: str = ""


def _load(cls: type, data: Any, path: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigError(f"expected a mapping at {path or 'top level'}")
    instance = cls()
    for f in fields(cls):
        key = f.metadata.get("key", f.name)
        if key not in data or data[key] is None:
            continue
        value = data[key]
        current = getattr(instance, f.name)
        where = f"{path}.{key}" if path else key
        if is_dataclass(current):
            value = _load(type(current), value, where)
        elif isinstance(current, bool):
            if not isinstance(value, bool):
                raise ConfigError(f"expected a boolean at {where}")
        elif isinstance(current, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"expected a number at {where}")
            value = float(value)
        elif isinstance(current, int):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"expected an integer at {where}")
        elif isinstance(current, str):
            if isinstance(value, (Mapping, list)):
                raise ConfigError(f"expected a string at {where}")
            value = str(value)
        elif isinstance(current, list):
            if not isinstance(value, list):
                raise ConfigError(f"expected a list at {where}")
            value = [str(item) for item in value]
        elif isinstance(current, dict):
            if not isinstance(value, Mapping):
                raise ConfigError(f"expected a mapping at {where}")
            value = {str(k): str(v) for k, v in value.items()}
        setattr(instance, f.name, value)
    return instance


@dataclass
class Config:
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    enforcement: EnforcementConfig = field(default_factory=EnforcementConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    dry_run: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Config":
        """Build a configuration from parsed YAML data, ignoring unknown keys."""
        return _load(cls, data, "")

    def apply_defaults(self) -> None:
        """Fill in default values for settings left empty."""
        certstream = self.monitoring.sources.certstream
        if not certstream.url:
            certstream.url = "wss://certstream.calidog.io/"
        html = self.enrichment.html_content
        if not html.timeout:
            html.timeout = "10s"
        if not html.user_agent:
            html.user_agent = "OpenBPL/1.0"
        if not self.enrichment.favicon.timeout:
            self.enrichment.favicon.timeout = "5s"
        if self.rules.favicon_similarity.threshold == 0:
            self.rules.favicon_similarity.threshold = 0.85
        if not self.storage.type:
            self.storage.type = "memory"
        if not self.logging.level:
            self.logging.level = "info"
        if not self.logging.format:
            self.logging.format = "text"
        if self.enforcement.email_abuse.smtp.port == 0:
            self.enforcement.email_abuse.smtp.port = 587

    def validate(self) -> None:
        """Raise ConfigError if the configuration is inconsistent."""
        if self.storage.type not in VALID_STORAGE_TYPES:
            raise ConfigError(
                f"invalid storage type: {self.storage.type} "
                "(must be: memory, sqlite, postgres)"
            )
        if self.logging.level not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"invalid log level: {self.logging.level} "
                "(must be: debug, info, warn, error)"
            )
        similarity = self.rules.favicon_similarity
        if similarity.enabled and not 0 <= similarity.threshold <= 1:
            raise ConfigError(
                "favicon similarity threshold must be between 0 and 1, "
                f"got: {similarity.threshold:f}"
            )
        email = self.enforcement.email_abuse
        if email.enabled:
            if not email.smtp.host:
                raise ConfigError(
                    "SMTP host is required when email enforcement is enabled"
                )
            if not email.from_:
                raise ConfigError(
                    "email from address is required when email enforcement is enabled"
                )


_ENV_PATTERN = re.compile(r"\$(?:\{([^}]*)\}|([A-Za-z0-9_]+))")


def expand_env(text: str) -> str:
    """Replace $NAME and ${NAME} with environment values; unset names become empty."""
    return _ENV_PATTERN.sub(
        lambda m: os.environ.get(m.group(1) if m.group(1) is not None else m.group(2), ""),
        text,
    )


def load_from_file(filename: str | os.PathLike[str]) -> Config:
    """Load, default and validate a configuration from a YAML file."""
    path = Path(filename)
    if not path.exists():
        raise ConfigError(f"configuration file not found: {filename}")
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc
    try:
        data = yaml.safe_load(expand_env(raw))
        config = Config.from_dict(data)
    except (yaml.YAMLError, ConfigError) as exc:
        raise ConfigError(f"failed to parse config file: {exc}") from exc
    config.apply_defaults()
    try:
        config.validate()
    except ConfigError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
    return config


SAMPLE_CONFIG = """\
# OpenBPL Configuration
# This is a sample configuration for the OpenBPL monitoring system

# Monitoring configuration
monitoring:
  sources:
    certstream:
      enabled: true
      url: "wss://certstream.calidog.io/"
      keywords:
        - "paypal"
        - "amazon"
        - "microsoft"
        - "apple"
        - "google"

# Enrichment settings
enrichment:
  html_content:
    enabled: true
    timeout: "10s"
    user_agent: "OpenBPL/1.0"
  favicon:
    enabled: true
    timeout: "5s"

# Detection rules
rules:
  favicon_similarity:
    enabled: true
    threshold: 0.85
    reference_favicons:
      paypal: "https://www.paypal.com/favicon.ico"
      amazon: "https://www.amazon.com/favicon.ico"
      microsoft: "https://www.microsoft.com/favicon.ico"
      apple: "https://www.apple.com/favicon.ico"
      google: "https://www.google.com/favicon.ico"

# Enforcement actions
enforcement:
  email_abuse:
    enabled: true
    smtp:
      host: "smtp.example.com"
      port: 587
      username: "alerts@example.com"
      password: "${SMTP_PASSWORD}"
    from: "OpenBPL <alerts@example.com>"
  logger:
    enabled: true

# Storage configuration
storage:
  type: "memory"  # Options: memory, sqlite, postgres

# Logging
logging:
  level: "info"
  format: "text"

# Run in dry-run mode (no enforcement actions will be taken)
dry_run: false
"""


def create_sample_config(filename: str | os.PathLike[str]) -> None:
    """Write a sample configuration file; refuse to overwrite an existing one."""
    path = Path(filename)
    if path.exists():
        raise ConfigError(f"configuration file already exists: {filename}")
    try:
        path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to write config file: {exc}") from exc