import logging
import os
from logging.config import dictConfig
from typing import Dict

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Chatty collaborators are held at WARNING unless HTTP debugging is switched on.
_COLLABORATOR_LOGGERS = ("httpx", "openai", "openai.agents")


def _level(name: str, default: str) -> str:
    return os.getenv(name, default).upper()


def configure_logging() -> None:
    """Configure the curriculum engine's log handlers from environment flags.

    ``CURRICULUM_LOG_LEVEL`` sets the root level, ``CURRICULUM_TELEMETRY_LOG_LEVEL``
    the ``TELEMETRY`` event lines and ``CURRICULUM_DEBUG_HTTP=1`` opens up the
    HTTP and language-model client loggers.
    """
    debug_http = os.getenv("CURRICULUM_DEBUG_HTTP", "0") == "1"
    collaborator_level = "DEBUG" if debug_http else "WARNING"
    loggers: Dict[str, Dict[str, object]] = {
        "curriculum.telemetry": {"level": _level("CURRICULUM_TELEMETRY_LOG_LEVEL", "INFO")},
        "uvicorn.access": {"level": "DEBUG" if debug_http else "INFO"},
    }
    for name in _COLLABORATOR_LOGGERS:
        loggers[name] = {"level": collaborator_level}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": loggers,
            "root": {
                "handlers": ["default"],
                "level": _level("CURRICULUM_LOG_LEVEL", "INFO"),
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured (debug_http=%s)", debug_http)
