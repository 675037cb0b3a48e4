"""
Logging configuration for the Market Data Gateway.
Supports both JSON and text logging formats.
"""

import logging
import logging.config
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from .config import Settings, settings as default_settings

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "yfinance", "peewee")


def setup_logging(config: Optional[Settings] = None) -> None:
    """Setup structured logging for the application."""
    config = config or default_settings

    if config.log_format == "json":
        logging_config = get_json_logging_config(config.log_level)
    else:
        logging_config = get_text_logging_config(config.log_level)

    logging.config.dictConfig(logging_config)
    logging.getLogger().setLevel(getattr(logging, config.log_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _console_handler(level: str, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "stream": sys.stdout
    }


def get_json_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get JSON logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(module)s %(funcName)s %(lineno)d",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {"console": _console_handler(level, "json")},
        "loggers": {
            "": {"handlers": ["console"], "level": level, "propagate": False},
            "gateway": {"handlers": ["console"], "level": level, "propagate": False}
        }
    }


def get_text_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get text logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s (%(filename)s:%(lineno)d)",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s [in %(pathname)s:%(lineno)d]",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": _console_handler(level, "standard" if level == "INFO" else "detailed")
        },
        "loggers": {
            "": {"handlers": ["console"], "level": level, "propagate": False},
            "gateway": {"handlers": ["console"], "level": level, "propagate": False}
        }
    }


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(f"gateway.{name}")


# Convenience function for getting loggers
def create_logger(module_name: str) -> logging.Logger:
    """Create a logger for a specific module."""
    return get_logger(module_name)
