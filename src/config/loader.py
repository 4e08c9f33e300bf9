"""
Config loader: YAML file -> frozen dataclass tree, validated against JSON Schema.

Schema: app_config.schema.json (next to this module).
The database path can be overridden with the LEDGER_DB_PATH environment
variable; the config file holds only defaults.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema
import yaml

logger = logging.getLogger("ledger.config")

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "app_config.schema.json"


class ConfigError(Exception):
    """Raised when config parsing or validation fails."""


@dataclass(frozen=True)
class DataConfig:
    db_path: str = "data/ledger.db"


@dataclass(frozen=True)
class ExecutionConfig:
    cash_instrument_id: int = 1
    serialize_per_user: bool = False
    batch_limit: int = 10
    history_limit: int = 50


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class AppConfig:
    data: DataConfig = DataConfig()
    execution: ExecutionConfig = ExecutionConfig()
    alerting: AlertingConfig = AlertingConfig()
    log_level: str = "INFO"


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    if not schema_path.exists():
        raise ConfigError(f"Schema file not found: {schema_path}")
    with open(schema_path) as f:
        schema = json.load(f)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ConfigError(f"Config validation failed: {exc.message}") from exc


def load_config(
    path: str | Path = "config.yaml",
    schema_path: str | Path | None = None,
) -> AppConfig:
    """
    Load configuration from a YAML file.

    Environment overrides:
      - LEDGER_DB_PATH  replaces data.db_path
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file is not valid YAML: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    _validate_schema(raw, Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH)

    data_raw = raw.get("data", {})
    db_path = os.environ.get("LEDGER_DB_PATH") or data_raw.get("db_path", "data/ledger.db")
    data_cfg = DataConfig(db_path=str(db_path))

    ex_raw = raw.get("execution", {})
    ex_cfg = ExecutionConfig(
        cash_instrument_id=int(ex_raw.get("cash_instrument_id", 1)),
        serialize_per_user=bool(ex_raw.get("serialize_per_user", False)),
        batch_limit=int(ex_raw.get("batch_limit", 10)),
        history_limit=int(ex_raw.get("history_limit", 50)),
    )

    a_raw = raw.get("alerting", {})
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=str(a_raw.get("webhook_url", "")),
    )

    cfg = AppConfig(
        data=data_cfg,
        execution=ex_cfg,
        alerting=a_cfg,
        log_level=str(raw.get("log_level", "INFO")).upper(),
    )
    logger.debug("Loaded config from %s (db=%s)", config_path, cfg.data.db_path)
    return cfg
