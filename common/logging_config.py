import logging
import os
import re
import sys
from typing import Optional


class PayloadTruncationFilter(logging.Filter):
    """Filter that shortens long base64/hex blobs in log records."""

    MAX_TOKEN_LENGTH = 64

    PATTERN = re.compile(r'[A-Za-z0-9+/=]{%d,}' % (MAX_TOKEN_LENGTH + 1))

    def filter(self, record: logging.LogRecord) -> bool:
        """Truncate oversized tokens in the message and its arguments."""
        if isinstance(record.msg, str):
            record.msg = self._truncate(record.msg)

        if hasattr(record, 'args') and record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._truncate_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._truncate_value(arg) for arg in record.args)

        return True

    def _truncate(self, text: str) -> str:
        return self.PATTERN.sub(
            lambda m: f"{m.group(0)[:16]}...<{len(m.group(0))} chars>",
            text
        )

    def _truncate_value(self, value):
        if isinstance(value, str):
            return self._truncate(value)
        if isinstance(value, (bytes, bytearray)):
            return f"<{len(value)} bytes>"
        return value


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    correlation_id: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration for a component.

    Args:
        component_name: Name of the component (e.g., 'receiver', 'sender')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO
        correlation_id: Optional correlation ID to include in log format

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')

    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(correlation_id))
    handler.addFilter(PayloadTruncationFilter())

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def _build_formatter(correlation_id: Optional[str]) -> logging.Formatter:
    if correlation_id:
        fmt = f'%(asctime)s - %(name)s - %(levelname)s - [{correlation_id}] - %(message)s'
    else:
        fmt = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    return logging.Formatter(fmt, datefmt='%Y-%m-%d %H:%M:%S')
