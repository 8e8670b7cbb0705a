import logging.config
import os
from typing import Optional


def setup_logging(level: Optional[str] = None) -> None:
    """Configure rtcpresence + uvicorn logging on one console handler.

    `level` wins over the LOG_LEVEL env (default INFO). Room/socket chatter is
    logged under `rtcpresence.services.rooms`; set it to WARNING separately
    with ROOMS_LOG_LEVEL on busy channels.
    """
    level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    rooms_level = os.getenv('ROOMS_LOG_LEVEL', level).upper()

    console = {'handlers': ['console'], 'level': level, 'propagate': False}
    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'default',
            }
        },
        'loggers': {
            '': {'handlers': ['console'], 'level': level},
            'rtcpresence': console,
            'rtcpresence.services.rooms': {'level': rooms_level},
            'uvicorn': console,
            'uvicorn.error': console,
            'uvicorn.access': console,
        },
    }
    logging.config.dictConfig(config)
