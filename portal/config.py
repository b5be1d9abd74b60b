"""
Portal Configuration Module

Load and manage configuration from config.yaml.
"""

import copy
import os
from pathlib import Path
from typing import Any
import yaml


MIGRATIONS_DIR = Path(__file__).parent.parent / "db" / "migrations"

DEFAULT_CONFIG = {
    "server": {
        "host": "0.0.0.0",
        "port": 4000,
        "expose_errors": False,
    },
    "app_base_url": "http://localhost:5173",
    "database": {
        "path": "db/employee_portal.sqlite",
        "migrations_dir": str(MIGRATIONS_DIR),
    },
    "smtp": {
        "host": "",
        "port": 587,
        "secure": False,
        "user": "",
        "password": "",
        "sender": "no-reply@company.com",
        "timeout": 10,
    },
    "registration": {
        "token_hours": 24,
        "min_password_length": 8,
    },
    "auth": {
        "password_scheme": "plaintext",
    },
    "logging": {
        "level": "INFO"
    },
}

# (env var, config section, key, converter)
ENV_OVERRIDES = [
    ("HOST", "server", "host", str),
    ("PORT", "server", "port", int),
    ("PORTAL_DB_PATH", "database", "path", str),
    ("PORTAL_MIGRATIONS_DIR", "database", "migrations_dir", str),
    ("SMTP_HOST", "smtp", "host", str),
    ("SMTP_PORT", "smtp", "port", int),
    ("SMTP_USER", "smtp", "user", str),
    ("SMTP_PASS", "smtp", "password", str),
    ("SMTP_FROM", "smtp", "sender", str),
    ("REG_TOKEN_HOURS", "registration", "token_hours", int),
    ("PORTAL_PASSWORD_SCHEME", "auth", "password_scheme", str),
    ("PORTAL_LOG_LEVEL", "logging", "level", str),
]


def find_config_file() -> Path | None:
    """Find the config file, checking common locations."""
    locations = [
        Path("config.yaml"),
        Path("config.yml"),
        Path.home() / ".config" / "portal" / "config.yaml",
    ]

    for path in locations:
        if path.exists():
            return path

    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Configuration dictionary with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        path = Path(config_path)
    else:
        path = find_config_file()

    if path and path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
            config = _deep_merge(config, file_config)

    # Override with environment variables
    for env_var, section, key, convert in ENV_OVERRIDES:
        if os.environ.get(env_var):
            config.setdefault(section, {})[key] = convert(os.environ[env_var])

    if os.environ.get("APP_BASE_URL"):
        config["app_base_url"] = os.environ["APP_BASE_URL"]

    if os.environ.get("SMTP_SECURE"):
        config["smtp"]["secure"] = _is_truthy(os.environ["SMTP_SECURE"])

    if os.environ.get("PORTAL_DEBUG"):
        config["server"]["expose_errors"] = _is_truthy(os.environ["PORTAL_DEBUG"])

    return config


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
