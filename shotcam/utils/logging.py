"""Logging setup for shotcam.

Logging is configured from a YAML ``dictConfig`` document. The packaged
``shotcam/config/logging.yaml`` is used unless the logging settings or the
``LOG_CFG`` environment variable name another file. Top-level
``development``/``production``/``testing`` sections in the document hold
per-environment overrides for its formatters, handlers and loggers.

When no usable document is found a console handler and a rotating file
handler under the configured log directory are installed instead.
"""

import logging
import logging.config
import logging.handlers
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from ..config.schemas import LoggingSettings, LogLevel

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "logging.yaml"
ENVIRONMENT_SECTIONS = ("development", "production", "testing")
OVERRIDABLE_SECTIONS = ("formatters", "handlers", "loggers")
LOG_FILE_NAME = "shotcam.log"


def _configured_settings() -> LoggingSettings:
    """Logging settings from the config store (schema defaults if unset)."""
    from shotcam.config import config

    return LoggingSettings.model_validate(config.get("system.logging", {}))


def _resolve_config_path(settings: LoggingSettings) -> Path:
    override = os.getenv(settings.env_key)
    if override:
        return Path(override)
    return Path(settings.config_path or DEFAULT_CONFIG_PATH)


def load_logging_document(path: Path, environment: Optional[str] = None) -> dict[str, Any]:
    """Read a dictConfig document and fold in one environment's overrides.

    Raises:
        OSError: If the file cannot be read
        yaml.YAMLError: If the file is not valid YAML
        ValueError: If the document is not a mapping
    """
    with open(path, encoding="utf-8") as f:
        document = yaml.safe_load(f)
    if not isinstance(document, dict):
        raise ValueError(f"{path} does not hold a logging configuration mapping")

    overrides = {
        name: document.pop(name) for name in ENVIRONMENT_SECTIONS if name in document
    }
    for section in OVERRIDABLE_SECTIONS:
        changes = (overrides.get(environment) or {}).get(section)
        if changes:
            document.setdefault(section, {}).update(changes)
    return document


def setup_logging(
    settings: Optional[LoggingSettings] = None,
    environment: Optional[str] = None,
    config_path: Optional[str | Path] = None,
) -> None:
    """Configure logging for the process.

    Args:
        settings: Logging settings (read from the config store if None)
        environment: Name of the override section to apply
        config_path: dictConfig file, taking precedence over the settings
    """
    if settings is None:
        settings = _configured_settings()

    path = Path(config_path) if config_path else _resolve_config_path(settings)
    if path.exists():
        try:
            logging.config.dictConfig(load_logging_document(path, environment))
            return
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            print(f"Invalid logging configuration {path}: {e}; using defaults")
    else:
        print(f"Logging configuration {path} not found; using defaults")

    _install_default_handlers(settings)


def _install_default_handlers(settings: LoggingSettings) -> None:
    """Console at the configured level plus a rotating debug log file."""
    level = getattr(logging, LogLevel(settings.level).value)
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )

    log_file = logging.handlers.RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    log_file.setLevel(logging.DEBUG)
    log_file.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(console)
    root.addHandler(log_file)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def setup_testing_logging() -> None:
    """Quiet logging for test runs."""
    setup_logging(LoggingSettings(level="WARNING"), environment="testing")


def auto_setup_logging() -> None:
    """Configure logging for the environment named by ``ENVIRONMENT``."""
    settings = _configured_settings()
    level = os.getenv("LOG_LEVEL")
    if level:
        settings = LoggingSettings.model_validate(
            {**settings.model_dump(), "level": level.upper()}
        )
    setup_logging(settings, environment=os.getenv("ENVIRONMENT", "development"))
