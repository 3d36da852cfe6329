"""Utils package for the Zoho bulk job service."""
from .logging_utils import (
    setup_logging,
    async_retry_with_backoff,
)
from .elk_logging import (
    ELKFormatter,
    setup_elk_logging,
    log_job_event,
    log_item_event,
)

__all__ = [
    'setup_logging',
    'async_retry_with_backoff',
    'ELKFormatter',
    'setup_elk_logging',
    'log_job_event',
    'log_item_event',
]
