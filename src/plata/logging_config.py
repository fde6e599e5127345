"""
Logging setup for applications built on plata.

Library modules log through stdlib loggers under the ``plata`` namespace and
attach structured data as ``extra={'extra_fields': {...}}``. Nothing is
configured on import; entry points (the CLI) call ``setup_logging``.
"""
import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

LOG_LEVEL_ENV = 'PLATA_LOG_LEVEL'
LOG_JSON_ENV = 'PLATA_LOG_JSON'
TEXT_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# HTTP and SDK libraries only log at WARNING and above
QUIET_LOGGERS = ('boto3', 'botocore', 'urllib3', 'requests', 'asyncio')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, merged with the record's ``extra_fields``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        service_name = getattr(record, 'service_name', None)
        if service_name:
            entry['service_name'] = service_name
        entry.update(getattr(record, 'extra_fields', None) or {})
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Stamps every record with the service name."""

    def __init__(self, service_name: str = 'plata'):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        return True


class SecurityFilter(logging.Filter):
    """Filter to mask credentials and signatures in log messages."""

    SENSITIVE_PATTERNS = [
        re.compile(r'(Signature=)[^&\s,]+'),
        re.compile(r'(AWSAccessKeyId=)[^&\s,]+'),
        re.compile(r'(SecurityToken=)[^&\s,]+'),
        re.compile(r'(Credential=)[^/\s,]+'),
        re.compile(r'((?:secret|secret_access_key|session_token)["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+', re.IGNORECASE),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Replace sensitive values with ``***``."""
        message = record.getMessage()
        redacted = message
        for pattern in self.SENSITIVE_PATTERNS:
            redacted = pattern.sub(r'\1***', redacted)

        if redacted != message:
            record.msg = redacted
            record.args = ()

        return True


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def setup_logging(
    service_name: str = 'plata',
    log_level: Optional[str] = None,
    enable_json: Optional[bool] = None
) -> logging.Logger:
    """
    Route all logging to stderr, as text or JSON, and configure structlog
    to render through the same handler.

    Args:
        service_name: Stamped on every record
        log_level: Level name, defaults to ``PLATA_LOG_LEVEL`` or INFO
        enable_json: JSON output, defaults to ``PLATA_LOG_JSON``

    Returns:
        The logger named ``service_name``
    """
    log_level = (log_level or os.environ.get(LOG_LEVEL_ENV) or 'INFO').upper()
    if enable_json is None:
        enable_json = _env_flag(LOG_JSON_ENV)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if enable_json else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(ContextFilter(service_name))
    handler.addFilter(SecurityFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_level, logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if enable_json else structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return logging.getLogger(service_name)


def get_logger(name: str) -> Any:
    """structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def log_performance(logger: logging.Logger, operation: str, duration_ms: float, **kwargs):
    """Log how long an operation took, as structured fields."""
    logger.info(f"Performance: {operation}", extra={
        'extra_fields': {'operation': operation, 'duration_ms': duration_ms, 'performance_metric': True, **kwargs}
    })
