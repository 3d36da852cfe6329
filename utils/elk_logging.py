"""
Structured JSON logging for log shipping (ELK / Loki / CloudWatch).

Every record becomes one JSON line; anything passed through ``extra=``
is lifted to a top-level key, so job events stay queryable.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Dict
import traceback

# LogRecord attributes that are not user-supplied context
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName',
])


class ELKFormatter(logging.Formatter):
    """JSON formatter for ELK stack"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            '@timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_elk_logging(
    level: str = "INFO",
    log_file: str = None,
    structured: bool = True
):
    """
    Setup logging optimized for ELK stack monitoring

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for local logs
        structured: If True, output JSON format for ELK
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if structured:
        formatter = ELKFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    return root_logger


def log_job_event(
    event_type: str,
    job_key: str,
    **kwargs
):
    """
    Log job lifecycle events (job_started, job_paused, job_completed, ...)

    Args:
        event_type: Type of event
        job_key: "{platform}-{account_id}"
        **kwargs: Additional context
    """
    logger = logging.getLogger('job_events')
    logger.info(
        f"Job event: {event_type}",
        extra={
            'event_type': event_type,
            'job_key': job_key,
            **kwargs
        }
    )


def log_item_event(
    event_type: str,
    job_key: str,
    item: str,
    extra: Dict = None,
):
    """
    Log per-item outcomes (item_processed, live_status_checked)

    Args:
        event_type: Type of event
        job_key: Owning job
        item: Target address
        extra: Stage outcomes and other context
    """
    logger = logging.getLogger('item_events')
    logger.info(
        f"Item event: {event_type}",
        extra={
            'event_type': event_type,
            'job_key': job_key,
            'item': item,
            **(extra or {})
        }
    )
