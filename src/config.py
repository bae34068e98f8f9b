"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. Explicit path passed to load_config()
2. ./epcis-relay.yaml (working directory)
3. ~/.epcis-relay/config.yaml (user home)

Environment variables override YAML: EPCIS_RELAY_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator

from src.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "EPCIS_RELAY_"

TEXT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, safe for any message content."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class DispatchConfig(BaseModel):
    """Dispatch cycle tuning."""

    batch_size: int = 10
    max_attempts: int = 3
    failure_threshold: float = 0.5
    submit_timeout_seconds: float = 30.0
    status_timeout_seconds: float = 30.0

    @field_validator("failure_threshold")
    @classmethod
    def threshold_in_range(cls, value: float) -> float:
        """Reject thresholds outside 0.0-1.0."""
        if not 0.0 <= value <= 1.0:
            raise ValueError("failure_threshold must be between 0.0 and 1.0")
        return value

    @field_validator("batch_size", "max_attempts")
    @classmethod
    def at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class PartnerConfig(BaseModel):
    """Partner network endpoints and credentials.

    The submission endpoint uses mutual TLS (cert_file/key_file/ca_file);
    the dashboard uses a username/password bearer token.
    """

    endpoint: str = ""
    cert_file: str | None = None
    key_file: str | None = None
    ca_file: str | None = None
    dashboard_url: str = ""
    username: str = ""
    password: str = ""
    client_id: str = "37018"
    company_id: str = "37018"


class DatabaseConfig(BaseModel):
    """Dispatch ledger database."""

    url: str = "sqlite:///./epcis_relay.db"


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = "INFO"
    format: Literal["text", "json"] = "text"


class RelayConfig(BaseModel):
    """Top-level configuration for the EPCIS relay."""

    dispatch: DispatchConfig = DispatchConfig()
    partner: PartnerConfig = PartnerConfig()
    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "epcis-relay.yaml",
        Path.cwd() / "epcis-relay.yml",
        Path.home() / ".epcis-relay" / "config.yaml",
        Path.home() / ".epcis-relay" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply EPCIS_RELAY_<SECTION>_<KEY> env var overrides to config data.

    For example, ``EPCIS_RELAY_DISPATCH_BATCH_SIZE`` maps to section
    ``dispatch``, field ``batch_size``. Values stay strings; pydantic
    coerces them to the field type.
    """
    known_sections = sorted(RelayConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()  # e.g. "dispatch_batch_size"
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if not isinstance(data.get(matched_section), dict):
            data[matched_section] = {}
        data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> RelayConfig:
    """Load relay configuration from YAML with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.epcis-relay/).

    Returns:
        Validated RelayConfig. Defaults (plus env overrides) when no file
        is found.

    Raises:
        FileNotFoundError: ``config_path`` was given but does not exist.
        pydantic.ValidationError: Values fail validation.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is None:
        logger.info("No config file found, using defaults")
    else:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    config = RelayConfig(**data)
    logger.debug("Effective config: %s", redact_for_logging(config.model_dump()))
    return config


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a stdout handler on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
