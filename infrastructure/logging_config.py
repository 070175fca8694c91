"""Logging configuration for the reservation engine"""
import logging
import logging.config

from infrastructure.config import settings


def build_logging_config(level: str) -> dict:
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'standard',
                'level': level,
            },
        },
        'loggers': {
            'application': {'level': level},
            'infrastructure': {'level': level},
            'main': {'level': level},
        },
        'root': {'level': level, 'handlers': ['console']},
    }


def setup_logging(level: str = None) -> None:
    """Install handlers; safe to call more than once"""
    level = (level or settings.LOG_LEVEL).upper()
    logging.config.dictConfig(build_logging_config(level))
    logging.getLogger(__name__).debug("Logging configured at %s", level)
