"""
Configuration loader.

App config: reads config.yaml, validates it against app_config.schema.json,
resolves LEDGER_DB_PATH from the environment.
"""

from config.loader import (
    AlertingConfig,
    AppConfig,
    ConfigError,
    DataConfig,
    ExecutionConfig,
    load_config,
)

__all__ = [
    "AlertingConfig",
    "AppConfig",
    "ConfigError",
    "DataConfig",
    "ExecutionConfig",
    "load_config",
]
