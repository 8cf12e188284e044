"""Logging setup for the stock ledger service."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

ROOT_LOGGER = 'stockledger'

_RESERVED_ATTRS = frozenset(logging.LogRecord('', 0, '', 0, '', None, None).__dict__) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are merged into the object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            payload[key] = value
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def get_logger(area: str) -> logging.Logger:
    return logging.getLogger(f'{ROOT_LOGGER}.{area}')


def configure_logging(level: str = 'INFO', json_output: bool = False) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        if getattr(handler, '_stockledger', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._stockledger = True
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
