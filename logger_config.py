"""
Logging configuration for the CRUD service.

Handlers run on AWS Lambda, which ships stdout to CloudWatch Logs, so every
logger writes a single-line record to stdout. Records carry the request
correlation id set by ``utils.decorators.api_handler`` (``-`` outside a
request) so CloudWatch lines can be grouped per request.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
NO_CORRELATION_ID = '-'


class CorrelationIdFilter(logging.Filter):
    """Give every record a ``correlation_id`` so LOG_FORMAT always resolves."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, 'correlation_id', None):
            record.correlation_id = NO_CORRELATION_ID
        return True


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (defaults to this module's name if not provided)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name or __name__)

    if logger.handlers:
        return logger

    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    logger.propagate = False

    return logger
