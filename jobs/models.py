"""
Job and result records for bulk contact/email jobs.

A JobRecord is the whole mutable state of one paced queue; a ResultRecord
is the outcome of one processed address. Only the scheduler mutates a
JobRecord, and only the verification task touches ResultRecord.live_status
(plus responses["live"]) after the record has been appended.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import pytz

import config


class JobStatus(Enum):
    PROCESSING = "Processing"
    PAUSED = "Paused"
    STOPPED = "Stopped"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.STOPPED, JobStatus.COMPLETED, JobStatus.FAILED)


class CreateOutcome(Enum):
    SUCCESS = "Success"
    DUPLICATE = "Duplicate"  # contact already existed; still carries its id
    FAILED = "Failed"


class SendOutcome(Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class LiveStatus:
    """Delivery status values. Other platform statuses pass through capitalised."""
    NOT_REQUESTED = "NotRequested"
    PENDING = "Pending"
    SENT = "Sent"
    BOUNCED = "Bounced"
    NOT_FOUND = "NotFound"
    NO_STATUS = "NoStatus"
    CHECK_FAILED = "CheckFailed"


def job_key(platform: str, account_id) -> str:
    """Composite key so one account can run CRM and Bigin jobs side by side."""
    return f"{platform}-{account_id}"


def _now() -> datetime:
    return datetime.now(pytz.timezone(config.TARGET_TIMEZONE))


@dataclass
class ResultRecord:
    item: str
    create_outcome: CreateOutcome
    send_outcome: SendOutcome
    live_status: str = LiveStatus.NOT_REQUESTED
    entity_id: Optional[str] = None
    responses: Dict[str, Any] = field(
        default_factory=lambda: {"contact": None, "email": None, "live": None}
    )

    @property
    def create_succeeded(self) -> bool:
        return self.create_outcome in (CreateOutcome.SUCCESS, CreateOutcome.DUPLICATE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": self.item,
            "create_outcome": self.create_outcome.value,
            "send_outcome": self.send_outcome.value,
            "live_status": self.live_status,
            "entity_id": self.entity_id,
            "responses": copy.deepcopy(self.responses),
        }


@dataclass
class JobRecord:
    account_id: str
    platform: Any  # zoho_client.Platform
    items: Tuple[str, ...]
    delay_seconds: float
    form_data: Dict[str, Any]
    cursor: int = 0
    results: List[ResultRecord] = field(default_factory=list)
    status: JobStatus = JobStatus.PROCESSING
    countdown: float = 0
    last_error: Optional[str] = None
    in_flight: bool = False
    started_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.items)

    def set_status(self, status: JobStatus, error: str = None):
        self.status = status
        if error is not None:
            self.last_error = error
        self.touch()

    def touch(self):
        self.updated_at = _now()

    def snapshot(self) -> Dict[str, Any]:
        """Read-only projection for status reporting."""
        return {
            "status": self.status.value,
            "cursor": self.cursor,
            "total": self.total,
            "results": [r.to_dict() for r in self.results],
            "countdown": self.countdown,
            "platform": self.platform.name,
            "last_error": self.last_error,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
