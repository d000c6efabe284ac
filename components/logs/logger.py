"""
Logging setup for the relay.
"""

import logging
import logging.config
from typing import Any

from config.config_loader import ConfigLoader

LOGGER_NAME = "tcp-relay"


def get_logger_config(config: dict[str, Any], log_config: str | None = None) -> dict | None:
    """
    Select the ``logging`` dictConfig section.

    An explicit log config file wins over the ``logging`` section of the
    merged configuration. The file may hold the dictConfig mapping directly
    or nested under a ``logging`` key.

    :param config: Merged configuration from :class:`ConfigLoader`.
    :param log_config: Optional path to a YAML logging configuration.
    :return: dictConfig mapping, or None when nothing is configured.
    :raises FileNotFoundError: If ``log_config`` does not exist.
    :raises yaml.YAMLError: If ``log_config`` is not valid YAML.
    """
    if log_config:
        data = ConfigLoader.load_file(log_config)
        return data.get("logging", data)

    return config.get("logging")


def get_logger(
    config: dict[str, Any],
    log_config: str | None = None,
    level: str | None = None,
) -> logging.Logger:
    """
    Configure logging and return the relay logger.

    Falls back to ``logging.basicConfig`` when no configuration is available.
    ``level`` overrides the configured level of the relay logger.
    """
    logging_config = get_logger_config(config, log_config)

    if logging_config:
        logging.config.dictConfig(logging_config)
    else:
        logging.basicConfig(
            format="%(asctime)s %(levelname)-7s %(message)s",
            level=level or logging.INFO,
        )

    logger = logging.getLogger(LOGGER_NAME)
    if level:
        logger.setLevel(level)

    return logger


class SessionLogger(logging.LoggerAdapter):
    """Prefix every record with the session id, e.g. ``[7] connected``."""

    def __init__(self, logger: logging.Logger, session_id: int):
        super().__init__(logger, {"session_id": session_id})

    def process(self, msg, kwargs):
        return f"[{self.extra['session_id']}] {msg}", kwargs
