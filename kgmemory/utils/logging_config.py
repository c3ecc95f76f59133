"""
Logging setup shared by the services, the tool server and the tests.
"""

import logging
import sys
from typing import List, Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every HTTP request or credential lookup
NOISY_LOGGERS = ('opensearch', 'urllib3', 'botocore', 'boto3')


def _resolve(config: Optional[AppConfig]) -> AppConfig:
    if config is not None:
        return config
    from .config import config as default_config
    return default_config


def _level(config: AppConfig) -> int:
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger for the knowledge graph.

    Records go to stderr, never stdout: the stdio tool transport owns stdout.
    A file handler is added when LOG_FILE is set.

    Args:
        config: AppConfig instance, uses default if None
    """
    config = _resolve(config)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding='utf-8'))

    logging.basicConfig(level=_level(config), format=LOG_FORMAT, handlers=handlers)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Module logger at the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level(_resolve(config)))
    return logger
